"""Command-line interface for docgate."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import click

from .builder import Builder
from .config import PipelineConfig, load_config
from .detector import ChangeDetector, GitDiffProvider
from .errors import ConfigError, PipelineError
from .gha import render_workflow, set_output
from .output import get_output_manager
from .pipeline import Pipeline, make_publisher
from .publisher import PublishTarget
from .trigger import EventKind, RevisionPair, TriggerEvent, event_from_github_env

logger = logging.getLogger(__name__)


def _fail(error: PipelineError) -> None:
    """Report a pipeline error and exit non-zero."""
    out = get_output_manager()
    out.error(str(error))
    if error.result is not None:
        out.error_detail(error.result.tail())
    sys.exit(1)


@click.group(name="docgate")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Config file (default: docgate.toml or [tool.docgate] in pyproject.toml).",
)
@click.option("--repo", type=click.Path(path_type=Path, file_okay=False), default=None, help="Repository root.")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, repo: Path | None, debug: bool) -> None:
    """Build documentation when it changes, and publish it from the primary branch."""
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    try:
        ctx.obj = load_config(config_path, repo=repo)
    except ConfigError as e:
        raise click.UsageError(str(e)) from e


@cli.command()
@click.option(
    "--event",
    type=click.Choice([k.value for k in EventKind]),
    default=EventKind.WORKFLOW_DISPATCH.value,
    show_default=True,
)
@click.option("--ref", default=None, help="Git ref of the event (default: refs/heads/<primary branch>).")
@click.option("--base-ref", default=None, help="Target branch of a pull request.")
@click.option("--base", default=None, help="Base revision (default: first parent of --head).")
@click.option("--head", default="HEAD", show_default=True, help="Head revision.")
@click.option("--from-github-env", is_flag=True, default=False, help="Read the event from GitHub Actions.")
@click.option("--dry-run", is_flag=True, default=False, help="Detect changes but do not build or publish.")
@click.pass_obj
def run(
    config: PipelineConfig,
    event: str,
    ref: str | None,
    base_ref: str | None,
    base: str | None,
    head: str,
    from_github_env: bool,
    dry_run: bool,
) -> None:
    """Detect changes, build, and publish."""
    if from_github_env:
        try:
            trigger = event_from_github_env(os.environ)
        except PipelineError as e:
            _fail(e)
            return
    else:
        trigger = TriggerEvent(
            kind=EventKind(event),
            ref=ref or f"refs/heads/{config.primary_branch}",
            base_ref=base_ref,
            revisions=RevisionPair(base=base, head=head),
        )

    report = Pipeline.from_config(config, environ=os.environ).run(trigger, dry_run=dry_run)
    if not report.triggered:
        click.echo(f"Event {trigger.kind.value} on {trigger.ref} does not trigger '{config.name}'.")
    if not report.ok:
        sys.exit(1)


@cli.command()
@click.option("--base", default=None, help="Base revision (default: first parent of --head).")
@click.option("--head", default="HEAD", show_default=True, help="Head revision.")
@click.pass_obj
def detect(config: PipelineConfig, base: str | None, head: str) -> None:
    """List changed paths under the watched prefix."""
    detector = ChangeDetector(GitDiffProvider(config.repo), config.watched_prefix)
    try:
        changes = detector.detect(RevisionPair(base=base, head=head))
    except PipelineError as e:
        _fail(e)
        return

    relevant = changes.under(config.watched_prefix)
    for path in relevant:
        click.echo(path)
    set_output("changed", str(bool(relevant)).lower())
    logger.info("%d of %d changed path(s) under '%s'", len(relevant), len(changes), config.watched_prefix)


@cli.command()
@click.pass_obj
def build(config: PipelineConfig) -> None:
    """Run the site generator."""
    builder = Builder(config.build_command, config.source_path, config.output_path)
    try:
        builder.ensure_tool()
        artifact = builder.build(timeout=config.timeout_seconds, capture=False)
    except PipelineError as e:
        _fail(e)
        return
    click.echo(f"Built {artifact.path}")


@cli.command()
@click.option(
    "--source",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=None,
    help="Directory to publish (default: the configured output_dir).",
)
@click.option("--target", default=None, help="Branch or directory to publish to (default: publish.target).")
@click.option("--keep-files/--no-keep-files", default=None, help="Keep existing files at the target.")
@click.option("--message", default=None, help="Commit message for git publishing.")
@click.pass_obj
def publish(
    config: PipelineConfig,
    source: Path | None,
    target: str | None,
    keep_files: bool | None,
    message: str | None,
) -> None:
    """Publish an existing build output."""
    source = source or config.output_path
    if not source.is_dir():
        raise click.UsageError(f"Nothing to publish: {source} does not exist")

    publish_target = PublishTarget(
        identifier=target or config.publish.target,
        keep_files=config.publish.keep_files if keep_files is None else keep_files,
    )
    publisher = make_publisher(config, os.environ)
    try:
        outcome = publisher.publish(source, publish_target, message=message, timeout=config.timeout_seconds)
    except PipelineError as e:
        _fail(e)
        return
    if outcome.changed:
        click.echo(f"Published {outcome.files} file(s) to {publish_target.identifier}")
    else:
        click.echo(f"{publish_target.identifier} is already up to date")


@cli.command()
@click.option("--output", type=click.Path(path_type=Path, dir_okay=False), default=None, help="Write to this file.")
@click.pass_obj
def workflow(config: PipelineConfig, output: Path | None) -> None:
    """Print the GitHub Actions workflow that runs this pipeline."""
    content = render_workflow(config)
    if output is None:
        click.echo(content, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content)
    click.echo(f"Wrote {output}")


def main() -> None:
    cli()
