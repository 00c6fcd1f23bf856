"""Location of the port files that running agents publish."""

from __future__ import annotations

import os
import sys

try:
    import pwd
except ImportError:  # not available on Windows
    pwd = None

CONFIG_DIR_ENV = "GOPS_CONFIG_DIR"


def _user_config_dir() -> str:
    if sys.platform == "win32":
        directory = os.environ.get("AppData", "")
        if not directory:
            raise OSError("%AppData% is not defined")
        return directory
    if sys.platform == "darwin":
        home = os.environ.get("HOME", "")
        if not home:
            raise OSError("$HOME is not defined")
        return os.path.join(home, "Library", "Application Support")

    directory = os.environ.get("XDG_CONFIG_HOME", "")
    if directory:
        if not os.path.isabs(directory):
            raise OSError("path in $XDG_CONFIG_HOME is relative")
        return directory
    home = os.environ.get("HOME", "")
    if not home:
        raise OSError("neither $XDG_CONFIG_HOME nor $HOME are defined")
    if not os.path.isabs(home):
        raise OSError("path in $HOME is relative")
    return os.path.join(home, ".config")


def _guess_home_dir() -> str:
    if pwd is not None:
        try:
            return pwd.getpwuid(os.getuid()).pw_dir
        except KeyError:
            pass
    return os.environ.get("HOME", "")


def config_dir() -> str:
    """Return the directory where agents write their port files."""
    override = os.environ.get(CONFIG_DIR_ENV, "")
    if override:
        return override
    try:
        return os.path.join(_user_config_dir(), "gops")
    except OSError:
        pass
    home = _guess_home_dir()
    if not home:
        raise OSError(
            "unable to get current user home directory: "
            "os/user lookup failed; $HOME is empty"
        )
    return os.path.join(home, ".config", "gops")


def pid_file(pid: int) -> str:
    """Return the path of the port file for the process ``pid``."""
    return os.path.join(config_dir(), str(pid))


def get_port(pid: int) -> str:
    """Read the port that the agent in process ``pid`` listens on."""
    with open(pid_file(pid), encoding="utf-8") as handle:
        return handle.read().strip()