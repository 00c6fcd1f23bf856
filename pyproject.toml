[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gops"
version = "0.1.0"
description = "List running compiled programs and diagnose them through an embeddable diagnostics agent."
requires-python = ">=3.10"
keywords = ["diagnostics", "agent", "processes", "profiling", "debugging"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Debuggers",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
gops = "gops.main:main"

[tool.hatch.build.targets.wheel]
packages = ["gops"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
