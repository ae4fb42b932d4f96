"""Tests for run output formatting."""

import pytest

from docgate.output import OutputManager, get_output_manager, reset_output_manager


def test_local_stage_scope(capsys) -> None:
    out = OutputManager()
    with out.stage_scope("build"):
        pass

    captured = capsys.readouterr().out
    assert "build" in captured
    assert "✓" in captured
    assert "::group::" not in captured


def test_gha_stage_scope_groups(capsys, monkeypatch) -> None:
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    out = OutputManager()

    with pytest.raises(RuntimeError):
        with out.stage_scope("publish"):
            raise RuntimeError("boom")

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "::group::publish"
    assert lines[1].startswith("✗ publish failed in ")
    assert lines[2] == "::endgroup::"


def test_gha_error_is_single_line_annotation(capsys, monkeypatch) -> None:
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    OutputManager().error("line one\nline two")
    assert capsys.readouterr().out == "::error::line one%0Aline two\n"


def test_global_manager_is_reset() -> None:
    first = get_output_manager()
    assert get_output_manager() is first
    reset_output_manager()
    assert get_output_manager() is not first
