"""Tests for subprocess helpers."""

import tempfile
from pathlib import Path

import pytest

from docgate.subprocess import RunResult, SubprocessError, run


def test_run_simple_command():
    result = run("echo", "hello", capture=True)
    assert result.ok
    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_run_result_properties():
    success = RunResult(returncode=0, command=["test"])
    assert success.ok
    assert not success.failed

    failure = RunResult(returncode=1, command=["test"])
    assert not failure.ok
    assert failure.failed


def test_run_failing_command():
    """Failing commands return a result rather than raising."""
    result = run("false", capture=True)
    assert result.failed
    assert not result.timed_out


def test_run_with_check_raises():
    with pytest.raises(SubprocessError) as exc_info:
        run("false", check=True, capture=True)

    assert exc_info.value.result.returncode != 0
    assert "false" in str(exc_info.value)


def test_run_with_cwd():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "test.txt").write_text("content")

        result = run("ls", cwd=tmpdir, capture=True)
        assert result.ok
        assert "test.txt" in result.stdout


def test_run_env_merges_with_existing():
    result = run("sh", "-c", 'echo "$MY_TEST_VAR:$PATH"', env={"MY_TEST_VAR": "hello123"}, capture=True)
    assert result.ok
    value, path = result.stdout.strip().split(":", 1)
    assert value == "hello123"
    assert path


def test_run_captures_stderr():
    result = run("sh", "-c", "echo error >&2", capture=True)
    assert result.ok
    assert "error" in result.stderr


def test_run_streaming_mode_collects_output(capsys):
    result = run("sh", "-c", "echo out; echo err >&2")
    assert result.ok
    captured = capsys.readouterr()
    assert "out" in captured.out
    assert "err" in captured.out
    assert "out" in result.stdout
    assert "err" in result.stdout


def test_run_capture_timeout():
    result = run("sleep", "5", capture=True, timeout=0.2)
    assert result.timed_out
    assert result.failed


def test_run_streaming_timeout():
    result = run("sleep", "5", timeout=0.2)
    assert result.timed_out
    assert result.failed


def test_run_not_found():
    with pytest.raises(FileNotFoundError):
        run("nonexistent_command_12345", capture=True)


def test_tail_combines_streams():
    result = RunResult(returncode=1, stdout="a\nb", stderr="c", command=["x"])
    assert result.tail(2) == ["b", "c"]


def test_subprocess_error_message():
    result = RunResult(returncode=1, command=["my", "command"])
    error = SubprocessError(result)
    assert "my command" in str(error)
    assert "exit code 1" in str(error)
