"""Tests for the single-run lease."""

import json
import socket
import subprocess
import sys
import threading

import pytest

from docgate.errors import LeaseUnavailable
from docgate.lease import RunLease


def test_lease_acquire_release(tmp_path) -> None:
    lease = RunLease(("docs", "refs/heads/main"), tmp_path)
    with lease:
        assert lease.held
        assert lease.path.exists()
        assert lease.owner()["key"] == ["docs", "refs/heads/main"]
    assert not lease.held
    assert not lease.path.exists()


def test_same_key_is_exclusive(tmp_path) -> None:
    with RunLease(("docs", "refs/heads/main"), tmp_path):
        with pytest.raises(LeaseUnavailable, match="Another run of 'docs'"):
            RunLease(("docs", "refs/heads/main"), tmp_path).acquire()


def test_different_branch_is_independent(tmp_path) -> None:
    with RunLease(("docs", "refs/heads/main"), tmp_path):
        with RunLease(("docs", "refs/pull/1/merge"), tmp_path) as other:
            assert other.held


def test_released_on_exception(tmp_path) -> None:
    lease = RunLease(("docs", "main"), tmp_path)
    with pytest.raises(RuntimeError):
        with lease:
            raise RuntimeError("boom")
    assert not lease.path.exists()


def test_waits_then_gives_up(tmp_path) -> None:
    with RunLease(("docs", "main"), tmp_path):
        waiter = RunLease(("docs", "main"), tmp_path, wait_seconds=0.3, poll_interval=0.05)
        with pytest.raises(LeaseUnavailable):
            waiter.acquire()


def test_stale_lease_is_taken_over(tmp_path) -> None:
    # A pid that has certainly exited
    proc = subprocess.run([sys.executable, "-c", "import os; print(os.getpid())"], capture_output=True, text=True)
    dead_pid = int(proc.stdout)

    lease = RunLease(("docs", "main"), tmp_path)
    lease.path.write_text(json.dumps({"pid": dead_pid, "host": socket.gethostname(), "key": ["docs", "main"]}))

    with lease:
        assert lease.owner()["pid"] != dead_pid


def test_lease_from_other_host_is_not_stale(tmp_path) -> None:
    lease = RunLease(("docs", "main"), tmp_path)
    lease.path.write_text(json.dumps({"pid": 1, "host": "elsewhere", "key": ["docs", "main"]}))

    with pytest.raises(LeaseUnavailable):
        lease.acquire()


def _dead_pid() -> int:
    proc = subprocess.run([sys.executable, "-c", "import os; print(os.getpid())"], capture_output=True, text=True)
    return int(proc.stdout)


def test_waiter_acquires_after_holder_releases(tmp_path) -> None:
    holder = RunLease(("docs", "main"), tmp_path)
    holder.acquire()
    timer = threading.Timer(0.2, holder.release)
    timer.start()
    try:
        waiter = RunLease(("docs", "main"), tmp_path, wait_seconds=2, poll_interval=0.05)
        waiter.acquire()
        assert waiter.held
        waiter.release()
    finally:
        timer.cancel()
    assert not holder.held


def test_late_stale_takeover_leaves_new_owner_alone(tmp_path) -> None:
    first = RunLease(("docs", "main"), tmp_path)
    first.path.write_text(json.dumps({"pid": _dead_pid(), "host": socket.gethostname(), "key": ["docs", "main"]}))

    # `late` has seen the stale record but not yet removed it...
    late = RunLease(("docs", "main"), tmp_path)
    stale = late.owner()
    assert late._is_stale(stale)

    # ...while `first` takes the lease over and re-creates it.
    first.acquire()
    record = first.path.read_text()
    try:
        assert not late._take_over(stale)
        assert first.path.read_text() == record
        with pytest.raises(LeaseUnavailable):
            late.acquire()
    finally:
        first.release()


def test_takeover_in_progress_is_not_duplicated(tmp_path) -> None:
    lease = RunLease(("docs", "main"), tmp_path)
    lease.path.write_text(json.dumps({"pid": _dead_pid(), "host": socket.gethostname(), "key": ["docs", "main"]}))
    marker = lease.path.with_name(lease.path.name + ".takeover")
    marker.touch()

    assert not lease._take_over(lease.owner())
    assert lease.path.exists()

    marker.unlink()
    assert lease._take_over(lease.owner())
    assert not lease.path.exists()
