import pytest

from gops.goprocess import GoProcess
from gops.root import format_processes, pad, shorten_version


@pytest.mark.parametrize(
    "version, want",
    [
        ("go1.8.1.typealias", "go1.8.1.typealias"),
        ("go1.9", "go1.9"),
        ("go1.9rc", "go1.9rc"),
        ("devel +990dac2723 Fri Jun 30 18:24:58 2017 +0000", "devel +990dac2723"),
    ],
)
def test_shorten_version(version, want):
    assert shorten_version(version) == want


def test_shorten_version_devel_without_hash():
    assert shorten_version("devel go1.23") == "devel go1.23"


def test_pad_extends_short_text():
    assert pad("ab", 4) == "ab  "


def test_pad_keeps_long_text():
    assert pad("abcd", 2) == "abcd"


def test_format_processes():
    procs = [
        GoProcess(pid=1, ppid=0, name="a", path="/bin/a",
                  build_version="go1.20", agent=True),
        GoProcess(pid=123, ppid=1, name="longer", path="/bin/longer",
                  build_version="devel +990dac2723 Fri Jun 30 18:24:58 2017 +0000"),
    ]
    lines = format_processes(procs)
    assert lines == [
        "1   0 a     * " + "go1.20".ljust(17) + " /bin/a",
        "123 1 longer  devel +990dac2723 /bin/longer",
    ]
    assert procs[1].build_version.startswith("devel +990dac2723 Fri")


def test_format_processes_empty():
    assert format_processes([]) == []