"""
Command line interface for the vc_commit_refiner tool.

This module defines the ``main`` function which is used as the entry
point when executing the ``commit-refiner`` command. It orchestrates
repository detection, configuration loading, reading the commits of a
revision range, running the refinement engine and presenting the run
report. Exit codes:

* 0 - success
* 1 - unexpected error
* 3 - not inside a Git repository
* 4 - the revision range holds no commits
* 5 - configuration error
* 6 - Git failure
* 7 - every unit failed
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, List, Optional

import click
import yaml

from vc_commit_refiner import __version__
from vc_commit_refiner.config.loader import ConfigError, RunSettings, load_config
from vc_commit_refiner.engine.models import RunReport
from vc_commit_refiner.engine.pipeline import run_pipeline
from vc_commit_refiner.llm.provider import create_provider
from vc_commit_refiner.llm.responses import Amendment, CommitCheck
from vc_commit_refiner.llm.tasks import UnitTask, create_task
from vc_commit_refiner.vcs.git_client import DEFAULT_RANGE, GitClient, GitError

# Create a module-level logger. Attach a null handler and disable
# propagation to avoid logging errors when the root logger's stream is
# closed (such as during unit tests). When logging is configured by
# the CLI, root handlers will be added and messages will propagate.
logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------
EXIT_SUCCESS = 0
EXIT_GENERIC_ERROR = 1
EXIT_NO_REPO = 3
EXIT_NO_COMMITS = 4
EXIT_CONFIG_ERROR = 5
EXIT_VCS_FAILURE = 6
EXIT_ALL_FAILED = 7


# ---------------------------------------------------------------------------
# Progress and status display utilities
# ---------------------------------------------------------------------------

class ProgressIndicator:
    """Simple progress indicator for user feedback."""

    def __init__(self, message: str, show_spinner: bool = True):
        self.message = message
        self.show_spinner = show_spinner
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        if self.show_spinner:
            click.echo(f"⠋ {self.message}...", nl=False)
        else:
            click.echo(f"→ {self.message}...")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self.start_time
        if exc_type is not None:
            click.echo("")
            return False
        if self.show_spinner:
            click.echo(f"\r✓ {self.message} (took {elapsed:.1f}s)")
        else:
            click.echo(f"  ✓ Done ({elapsed:.1f}s)")
        return False


def print_step(step_num: int, total_steps: int, message: str):
    """Print a step indicator."""
    click.echo(f"\n{'='*60}")
    click.echo(f"Step {step_num}/{total_steps}: {message}")
    click.echo(f"{'='*60}")


def print_info(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}ℹ {message}")


def print_success(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}✓ {message}")


def print_warning(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}⚠ {message}")


def print_error(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}✗ {message}", err=True)


def print_summary_box(title: str, items: List[str]):
    """Print a formatted summary box."""
    max_width = max(len(title), max(len(item) for item in items) if items else 0)
    box_width = min(max_width + 4, 60)

    click.echo(f"\n┌{'─' * box_width}┐")
    click.echo(f"│ {title.ljust(box_width - 2)}│")
    click.echo(f"├{'─' * box_width}┤")
    for item in items:
        click.echo(f"│ {item.ljust(box_width - 2)}│")
    click.echo(f"└{'─' * box_width}┘")


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


# ---------------------------------------------------------------------------
# Result display
# ---------------------------------------------------------------------------

def display_amendment(amendment: Amendment, original_subject: str) -> None:
    click.echo(f"\n🔧 {amendment.commit[:7]}  {original_subject}")
    for line in amendment.message.splitlines():
        click.echo(f"   {line}")
    if amendment.summary:
        print_info(amendment.summary, indent=1)


def display_check(check: CommitCheck, original_subject: str) -> None:
    marker = "✓" if check.passes else "✗"
    click.echo(f"\n{marker} {check.commit[:7]}  {original_subject}")
    for issue in check.issues:
        location = f"{issue.section}: " if issue.section else ""
        click.echo(f"   [{issue.severity}] {location}{issue.rule}")
        if issue.explanation:
            click.echo(f"      {issue.explanation}")
    if check.suggestion is not None:
        click.echo("   Suggested message:")
        for line in check.suggestion.message.splitlines():
            click.echo(f"     {line}")
    if check.summary:
        print_info(check.summary, indent=1)


def display_report(report: RunReport) -> None:
    """Print every successful payload item followed by the failures."""
    subjects = {commit.hash: commit.subject for commit in report.commits()}
    for result in report:
        if not result.succeeded:
            continue
        for item in result.payload or []:
            subject = subjects.get(item.commit, "")
            if isinstance(item, CommitCheck):
                display_check(item, subject)
            else:
                display_amendment(item, subject)

    failures = report.failures()
    if failures:
        click.echo("")
        print_warning(f"{_plural(len(failures), 'unit')} failed:")
        for result in failures:
            print_error(result.describe_failure(), indent=1)


def save_report(report: RunReport, task: UnitTask, path: Path) -> int:
    """Write the successful payload items to ``path`` as YAML; return the item count."""
    entries: List[Any] = [item.to_dict() for result in report.successes() for item in (result.payload or [])]
    document = yaml.safe_dump(
        {task.response_key: entries},
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    path.write_text(document, encoding="utf-8")
    logger.debug("Saved %d item(s) to %s", len(entries), path)
    return len(entries)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

@click.command()
@click.argument("revision_range", required=False, default=DEFAULT_RANGE)
@click.option("--check", "check", is_flag=True, help="Validate commit messages instead of suggesting amendments.")
@click.option("--concurrency", type=click.IntRange(min=1), help="Maximum number of concurrent provider calls.")
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    help="Group commits into token-budgeted batches of at most this many commits.",
)
@click.option("--no-coherence", is_flag=True, help="Skip the cross-commit coherence pass.")
@click.option("--max-retries", type=click.IntRange(min=1), help="Maximum attempts per provider call.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the configuration file.",
)
@click.option(
    "--save",
    "save_path",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    help="Write the results to a YAML file.",
)
@click.option("--verbose", is_flag=True, help="Enable verbose (debug) output.")
@click.version_option(version=__version__, prog_name="commit-refiner")
def main(
    revision_range: str,
    check: bool,
    concurrency: Optional[int],
    batch_size: Optional[int],
    no_coherence: bool,
    max_retries: Optional[int],
    config_path: Optional[Path],
    save_path: Optional[Path],
    verbose: bool,
) -> None:
    """🔎 AI-assisted review of existing commit messages.

    Reads the commits of REVISION_RANGE (default HEAD~5..HEAD) and either
    suggests improved messages or, with --check, validates them.
    """
    # Use force=True so handlers are reconfigured on repeated invocations.
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
        force=True,
    )

    click.echo("\n" + "=" * 60)
    click.echo("🤖 AI Commit Refiner".center(60))
    click.echo("=" * 60)

    ctx = click.get_current_context(silent=True)
    total_steps = 5

    try:
        # Step 1: Detect repository
        print_step(1, total_steps, "Detecting Repository")
        repo_root = GitClient.find_repo_root(Path.cwd())
        if repo_root is None:
            print_error("Current directory is not inside a Git repository.")
            raise click.exceptions.Exit(EXIT_NO_REPO)
        print_success(f"Found Git repository at: {repo_root}")

        # Step 2: Load configuration
        print_step(2, total_steps, "Loading Configuration")
        try:
            with ProgressIndicator("Reading configuration"):
                config = load_config(config_path)
                settings = RunSettings.from_config(
                    config,
                    concurrency_limit=concurrency,
                    legacy_batch_size=batch_size,
                    max_retry_attempts=max_retries,
                    coherence_enabled=False if no_coherence else None,
                )
                provider = create_provider(config)
        except ConfigError as exc:
            print_error(f"Configuration error: {exc}")
            raise click.exceptions.Exit(EXIT_CONFIG_ERROR)

        metadata = provider.metadata()
        print_success("Configuration loaded successfully")
        print_info(f"Provider: {metadata.provider_name}", indent=1)
        print_info(f"Model: {metadata.model}", indent=1)
        print_info(f"Concurrency: {settings.concurrency_limit}", indent=1)
        if settings.legacy_batch_size is not None:
            print_info(f"Batch size: {settings.legacy_batch_size}", indent=1)

        # Step 3: Read commits
        print_step(3, total_steps, "Reading Commits")
        client = GitClient(repo_root)
        try:
            with ProgressIndicator(f"Reading commits in {revision_range}"):
                commits = client.list_commits(revision_range)
        except GitError as exc:
            print_error(f"Git error: {exc}")
            raise click.exceptions.Exit(EXIT_VCS_FAILURE)

        if not commits:
            print_warning(f"No commits found in {revision_range}.")
            raise click.exceptions.Exit(EXIT_NO_COMMITS)
        print_success(f"Found {_plural(len(commits), 'commit')}")
        for commit in commits[:5]:
            print_info(f"{commit.short_hash} {commit.subject}", indent=1)
        if len(commits) > 5:
            print_info(f"... and {len(commits) - 5} more", indent=1)

        # Step 4: Run the engine
        task = create_task(check)
        action = "Checking" if check else "Refining"
        print_step(4, total_steps, f"{action} Commit Messages")

        def on_progress(done: int, total: int) -> None:
            print_info(f"Processed {done}/{total} unit(s)", indent=1)

        try:
            # Diffs are read lazily, so planning can still hit Git.
            with ProgressIndicator(f"{action} {_plural(len(commits), 'commit')}", show_spinner=False):
                report = run_pipeline(commits, provider, task, settings, on_progress=on_progress)
        except GitError as exc:
            print_error(f"Git error: {exc}")
            raise click.exceptions.Exit(EXIT_VCS_FAILURE)
        if report.coherence_applied:
            print_success("Results reconciled across units")

        # Step 5: Results
        print_step(5, total_steps, "Results")
        display_report(report)

        if save_path is not None:
            try:
                count = save_report(report, task, save_path)
            except OSError as exc:
                print_error(f"Failed to save results: {exc}")
                raise click.exceptions.Exit(EXIT_GENERIC_ERROR)
            print_success(f"Saved {count} entr{'y' if count == 1 else 'ies'} to {save_path}")

        print_summary_box(
            "Summary",
            [
                f"Commits: {len(commits)}",
                f"Units: {len(report)}",
                f"Succeeded: {report.succeeded}",
                f"Failed: {report.failed}",
            ],
        )

        if report.succeeded == 0:
            print_error("Every unit failed; no results were produced.")
            raise click.exceptions.Exit(EXIT_ALL_FAILED)
        raise click.exceptions.Exit(EXIT_SUCCESS)

    except click.exceptions.Exit:
        # Click uses its own Exit exception; re-raise to let Click handle it
        raise
    except Exception as exc:
        logging.exception("Unhandled error: %s", exc)
        print_error(f"Unexpected error: {exc}")
        if ctx is not None:
            ctx.exit(EXIT_GENERIC_ERROR)
        raise SystemExit(EXIT_GENERIC_ERROR)
