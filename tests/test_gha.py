"""Tests for GitHub Actions integration."""

from ruamel.yaml import YAML

from docgate.config import PipelineConfig, PublishConfig
from docgate.gha import StepSpec, render_workflow, set_output


def test_set_output_outside_gha() -> None:
    assert set_output("changed", "true") is False


def test_set_output_single_and_multiline(tmp_path, monkeypatch) -> None:
    outputs = tmp_path / "out"
    monkeypatch.setenv("GITHUB_OUTPUT", str(outputs))

    assert set_output("changed", "true")
    set_output("paths", "docs/a.md\ndocs/b.md")

    lines = outputs.read_text().splitlines()
    assert lines[0] == "changed=true"
    assert lines[1].startswith("paths<<ghadelimiter_")
    assert lines[2:4] == ["docs/a.md", "docs/b.md"]
    assert lines[4] == lines[1].split("<<", 1)[1]


def test_step_spec_omits_empty_keys() -> None:
    d = StepSpec(name="Checkout", uses="actions/checkout@v4").to_dict()
    assert d["uses"] == "actions/checkout@v4"
    assert "run" not in d
    assert "with" not in d


def test_render_workflow() -> None:
    config = PipelineConfig(name="handbook", primary_branch="trunk", timeout_minutes=15)
    content = render_workflow(config)

    assert content.startswith("# ====")
    assert "GENERATED FILE" in content

    workflow = YAML().load(content)
    assert workflow["name"] == "Deploy handbook"
    assert workflow["on"]["push"]["branches"] == ["trunk"]
    assert workflow["on"]["pull_request"]["branches"] == ["trunk"]
    assert "workflow_dispatch" in workflow["on"]

    job = workflow["jobs"]["deploy"]
    assert job["timeout-minutes"] == 15
    assert job["concurrency"]["group"] == "${{ github.workflow }}-${{ github.ref }}"
    assert job["permissions"] == {"contents": "write"}
    run_step = job["steps"][-1]
    assert run_step["run"] == "docgate run --from-github-env"
    assert run_step["env"] == {"GITHUB_TOKEN": "${{ secrets.GITHUB_TOKEN }}"}


def test_render_workflow_custom_token_env() -> None:
    config = PipelineConfig(publish=PublishConfig(token_env="PAGES_TOKEN"))
    workflow = YAML().load(render_workflow(config, include_header=False))
    assert workflow["jobs"]["deploy"]["steps"][-1]["env"] == {"PAGES_TOKEN": "${{ secrets.PAGES_TOKEN }}"}
