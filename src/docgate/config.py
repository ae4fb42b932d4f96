"""Pipeline configuration.

Configuration is read from TOML, in order of preference:

- an explicit `--config` file
- `docgate.toml` in the repository root
- the `[tool.docgate]` table of `pyproject.toml`

Top-level scalar fields can then be overridden with `DOCGATE_<FIELD>` environment
variables, e.g. `DOCGATE_PRIMARY_BRANCH=trunk`.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "docgate.toml"
ENV_PREFIX = "DOCGATE_"


class PublishConfig(BaseModel):
    """Where and how build output is published."""

    model_config = {"frozen": True, "extra": "forbid"}

    kind: Literal["git", "directory"] = "git"
    target: str = "gh-pages"
    keep_files: bool = True
    remote: str = "origin"
    token_env: str = "GITHUB_TOKEN"
    user_name: str = "github-actions[bot]"
    user_email: str = "41898282+github-actions[bot]@users.noreply.github.com"
    nojekyll: bool = True


class PipelineConfig(BaseModel):
    """The full configuration surface of one docs pipeline."""

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = "docs"
    repo: Path = Path(".")
    watched_prefix: str = "docs/"
    source_dir: Path = Path("docs")
    output_dir: Path = Path("docs/book")
    build_command: list[str] = Field(default_factory=lambda: ["mdbook", "build"])
    primary_branch: str = "main"
    timeout_minutes: float = 10
    lease_dir: Path = Path(".docgate/leases")
    lease_wait_seconds: float = 0
    publish: PublishConfig = Field(default_factory=PublishConfig)

    @field_validator("build_command")
    @classmethod
    def _command_not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("build_command must name an executable")
        return value

    @field_validator("timeout_minutes")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout_minutes must be positive")
        return value

    def resolve(self, path: Path) -> Path:
        """Resolve a configured path against the repository root."""
        return path if path.is_absolute() else self.repo / path

    @property
    def source_path(self) -> Path:
        return self.resolve(self.source_dir)

    @property
    def output_path(self) -> Path:
        return self.resolve(self.output_dir)

    @property
    def lease_path(self) -> Path:
        return self.resolve(self.lease_dir)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e


def _find_raw_config(repo: Path) -> tuple[dict[str, Any], Path | None]:
    candidate = repo / CONFIG_FILENAME
    if candidate.is_file():
        return _read_toml(candidate), candidate

    pyproject = repo / "pyproject.toml"
    if pyproject.is_file():
        table = _read_toml(pyproject).get("tool", {}).get("docgate")
        if table is not None:
            return table, pyproject

    return {}, None


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name in PipelineConfig.model_fields:
        if name in ("publish", "build_command"):
            continue
        value = environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value is not None:
            overrides[name] = value
    return overrides


def load_config(
    path: Path | None = None,
    *,
    repo: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> PipelineConfig:
    """
    Load and validate the pipeline configuration.

    Args:
        path: Explicit config file. If None, look in the repository root.
        repo: Repository root used for discovery and as the default `repo` field.
        environ: Environment used for `DOCGATE_*` overrides (defaults to os.environ).

    Returns:
        A frozen PipelineConfig. Defaults are used when no config file exists.

    Raises:
        ConfigError: If a file cannot be parsed or validation fails.

    """
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        raw, source = _read_toml(path), path
        # A pyproject.toml given explicitly still only contributes its tool table
        if path.name == "pyproject.toml":
            raw = raw.get("tool", {}).get("docgate", {})
    else:
        raw, source = _find_raw_config(repo or Path("."))

    data = dict(raw)
    if repo is not None:
        data.setdefault("repo", str(repo))
    data.update(_env_overrides(os.environ if environ is None else environ))

    try:
        config = PipelineConfig.model_validate(data)
    except ValidationError as e:
        where = f" in {source}" if source else ""
        raise ConfigError(f"Invalid configuration{where}:\n{e}") from e

    logger.debug("Loaded config from %s: %s", source or "defaults", config)
    return config
