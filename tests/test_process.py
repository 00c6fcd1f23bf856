import os
from types import SimpleNamespace
from unittest import mock

import pytest

from gops.process import (
    cpu_percent_within_time,
    elapsed_time,
    fmt_etime_duration,
    parse_period,
    process_info,
)


@pytest.mark.parametrize(
    "seconds, want",
    [
        (0, "00:00"),
        (2 * 60 + 5.4, "02:05"),
        (1.5, "00:02"),
        (2 * 3600 + 42 * 60 + 12, "02:42:12"),
        (24 * 3600, "01-00:00:00"),
        (24 * 3600 + 59 * 60 + 59, "01-00:59:59"),
    ],
)
def test_fmt_etime_duration(seconds, want):
    assert fmt_etime_duration(seconds) == want


@pytest.mark.parametrize(
    "text, want",
    [
        ("5s", 5.0),
        ("1m30s", 90.0),
        ("10", 10.0),
        ("1.5h", 5400.0),
        ("500ms", 0.5),
        ("0", 0.0),
        ("-2s", -2.0),
    ],
)
def test_parse_period(text, want):
    assert parse_period(text) == pytest.approx(want)


@pytest.mark.parametrize("text", ["bad", "", "5x", ".s"])
def test_parse_period_rejects_garbage(text):
    with pytest.raises(ValueError, match="second argument"):
        parse_period(text)


def test_process_info_bad_pid():
    with pytest.raises(ValueError, match="first argument"):
        process_info(["abc"])


def test_process_info_negative_period():
    with pytest.raises(ValueError, match="negative duration"):
        process_info([str(os.getpid()), "-1s"])


def test_process_info_missing_process():
    with pytest.raises(RuntimeError, match="Cannot read process info"):
        process_info(["99999999"])


def test_process_info_prints_details(capsys):
    process_info([str(os.getpid())])
    out = capsys.readouterr().out
    assert "threads:\t" in out
    assert "cmd+args:\t" in out
    assert "elapsed time:\t" in out


def test_process_info_with_period(capsys):
    process_info([str(os.getpid()), "0.05s"])
    out = capsys.readouterr().out
    assert "cpu usage (50ms):\t" in out


class FakeTimes:
    def __init__(self, *samples):
        self._samples = iter(samples)

    def cpu_times(self):
        user, system = next(self._samples)
        return SimpleNamespace(user=user, system=system)


def test_cpu_percent_within_time():
    proc = FakeTimes((1.0, 1.0), (1.5, 1.5))
    assert cpu_percent_within_time(proc, 0.01) == pytest.approx(10000.0)


def test_cpu_percent_within_time_rejects_zero_period():
    with pytest.raises(ValueError):
        cpu_percent_within_time(FakeTimes(), 0)


def test_elapsed_time():
    proc = SimpleNamespace(create_time=lambda: 10000.0 - 3725)
    with mock.patch("time.time", return_value=10000.0):
        assert elapsed_time(proc) == "01:02:05"