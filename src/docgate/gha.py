"""GitHub Actions integration.

- `set_output()` writes step outputs to `$GITHUB_OUTPUT`
- `render_workflow()` generates the workflow that runs `docgate run` on CI
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from io import StringIO
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from .config import PipelineConfig


def set_output(name: str, value: str) -> bool:
    """
    Write a step output for later steps and jobs.

    Returns False (and does nothing) when not running under GitHub Actions.
    """
    github_output = os.environ.get("GITHUB_OUTPUT")
    if not github_output:
        return False
    with open(github_output, "a") as f:
        if "\n" in value:
            delimiter = f"ghadelimiter_{uuid.uuid4()}"
            f.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")
        else:
            f.write(f"{name}={value}\n")
    return True


@dataclass
class StepSpec:
    """A step within a GHA job."""

    name: str
    run: str | None = None
    uses: str | None = None
    with_: dict[str, Any] | None = None
    env: dict[str, str] | None = None
    working_directory: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for YAML serialization."""
        d: CommentedMap = CommentedMap()
        d["name"] = self.name
        if self.uses:
            d["uses"] = self.uses
        if self.with_:
            d["with"] = self.with_
        if self.working_directory:
            d["working-directory"] = self.working_directory
        if self.run:
            d["run"] = self.run
        if self.env:
            d["env"] = self.env
        return d


@dataclass
class JobSpec:
    """A job within a GHA workflow."""

    runs_on: str = "ubuntu-22.04"
    steps: list[StepSpec] = field(default_factory=list)
    timeout_minutes: int | None = None
    concurrency_group: str | None = None
    permissions: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"runs-on": self.runs_on}
        if self.timeout_minutes:
            d["timeout-minutes"] = self.timeout_minutes
        if self.permissions:
            d["permissions"] = self.permissions
        if self.concurrency_group:
            d["concurrency"] = {"group": self.concurrency_group}
        d["steps"] = [s.to_dict() for s in self.steps]
        return d


def generate_workflow_header(config_source: str | None = None) -> str:
    lines = [
        "# ============================================================================",
        "# GENERATED FILE - DO NOT EDIT MANUALLY",
        "#",
        "# This workflow is generated by docgate. To modify:",
        "#   1. Edit the docgate configuration",
        "#   2. Run: docgate workflow --output <this file>",
        "#   3. Commit the regenerated file",
        "#",
    ]
    if config_source:
        lines.append(f"# Source: {config_source}")
    lines.extend(
        [
            "# ============================================================================",
            "",
        ]
    )
    return "\n".join(lines)


def build_workflow(config: PipelineConfig, *, install: str = "pip install docgate") -> dict[str, Any]:
    """Build the workflow as a plain mapping."""
    branches = [config.primary_branch]
    job = JobSpec(
        timeout_minutes=max(1, round(config.timeout_minutes)),
        concurrency_group="${{ github.workflow }}-${{ github.ref }}",
        permissions={"contents": "write"},
        steps=[
            StepSpec(name="Checkout", uses="actions/checkout@v4", with_={"fetch-depth": 0}),
            StepSpec(name="Set up Python", uses="actions/setup-python@v5", with_={"python-version": "3.11"}),
            StepSpec(name="Install docgate", run=install),
            StepSpec(
                name="Detect, build and publish",
                run="docgate run --from-github-env",
                env={config.publish.token_env: f"${{{{ secrets.{config.publish.token_env} }}}}"},
            ),
        ],
    )
    return {
        "name": f"Deploy {config.name}",
        "on": {
            "push": {"branches": branches},
            "pull_request": {"branches": branches},
            "workflow_dispatch": None,
        },
        "jobs": {"deploy": job.to_dict()},
    }


def render_workflow(config: PipelineConfig, *, include_header: bool = True, config_source: str | None = None) -> str:
    """Render the deployment workflow as YAML."""
    yaml = YAML()
    yaml.default_flow_style = False

    stream = StringIO()
    yaml.dump(build_workflow(config), stream)
    content = stream.getvalue()

    if include_header:
        return generate_workflow_header(config_source) + content
    return content
