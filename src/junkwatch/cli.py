"""junkwatch command-line interface."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from . import __version__
from .classifier import ClassifyError, MailClassifier
from .config import Config, ConfigError, load_config, read_learn_interval, resolve_config_path
from .handles import open_stores
from .logging import configure_logging
from .maildir import MaildirError, ensure_mailbox_structure
from .runtime import Daemon, DaemonError
from .scheduler import LearningCycleError, LearningScheduler
from .store import StoreOpenError
from .types import Mailbox

app = typer.Typer(help="Junk mail classification daemon.")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None
    dry_run: bool = False


@app.callback()
def _junkwatch(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to config (env JUNKWATCH_CONFIG or ~/.config/junkwatch/config.yaml).",
        ),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option(
            "--dry-run",
            help="Classify without moving any mail (overrides the config file).",
        ),
    ] = False,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved, dry_run=dry_run)


@app.command()
def run(ctx: typer.Context) -> None:
    """Watch every maildir, classify new mail and relearn periodically."""

    state = _state(ctx)
    config = _load_environment(state)
    config_path = resolve_config_path(state.config_path)

    def interval_source() -> str:
        return read_learn_interval(config_path)

    LOGGER.info(
        "junkwatch %s starting with %s maildir(s)%s",
        __version__,
        len(config.maildirs),
        " in dry-run mode" if config.dry_run else "",
    )
    daemon = Daemon(config, interval_source=interval_source)
    try:
        daemon.run()
    except StoreOpenError as exc:
        _fail("Cannot load stores", exc)
    except MaildirError as exc:
        _fail("Cannot load maildirs", exc)
    except DaemonError as exc:
        _fail("junkwatch stopped", exc)


@app.command()
def learn(ctx: typer.Context) -> None:
    """Back up every store and learn from sorted mail once, then exit."""

    state = _state(ctx)
    config = _load_environment(state)
    classifier = MailClassifier(threshold=config.junk_threshold)
    try:
        for mailbox in config.maildirs:
            ensure_mailbox_structure(mailbox)
        with open_stores(config.maildirs) as handles:
            scheduler = LearningScheduler(
                config.maildirs,
                handles,
                classifier,
                interval_source=lambda: config.learn_interval,
            )
            report = scheduler.run_cycle()
    except (StoreOpenError, MaildirError, LearningCycleError) as exc:
        _fail("Learning failed", exc)

    for mailbox in report.processed:
        failures = len(report.learn_failures.get(mailbox, []))
        backup = "failed" if mailbox in report.backup_failures else "ok"
        typer.echo(f"{mailbox}: backup {backup}, {failures} message(s) failed to learn")
    typer.echo(f"Learned {report.learned} new message(s), {report.skipped} unchanged.")


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show what each store has learned (requires the daemon to be stopped)."""

    state = _state(ctx)
    config = _load_environment(state)
    try:
        with open_stores(config.maildirs, read_only=True) as handles:
            for mailbox, handle in handles.items():
                summary = handle.stats()
                typer.echo(f"{mailbox}:")
                typer.echo(f"  good mails learned: {summary.good_count}")
                typer.echo(f"  junk mails learned: {summary.junk_count}")
                typer.echo(f"  number of good words: {summary.good_words}")
                typer.echo(f"  number of junk words: {summary.junk_words}")
    except StoreOpenError as exc:
        _fail("Cannot load stores", exc)


@app.command()
def classify(
    ctx: typer.Context,
    message: Annotated[Path, typer.Argument(..., help="Path to an RFC822 message file.")],
    mailbox: Annotated[
        Path | None,
        typer.Option(
            "-m",
            "--mailbox",
            help="Maildir whose store is used (defaults to the first configured one).",
        ),
    ] = None,
) -> None:
    """Score a single message without moving it."""

    state = _state(ctx)
    config = _load_environment(state)
    target = _resolve_mailbox(config, mailbox)
    message_path = message.expanduser()
    if not message_path.is_file():
        typer.secho(f"Message file not found: {message_path}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from None

    classifier = MailClassifier(threshold=config.junk_threshold)
    try:
        with open_stores([target], read_only=True) as handles:
            probability = classifier.score(handles[target], message_path)
    except (StoreOpenError, ClassifyError) as exc:
        _fail("Classification failed", exc)

    is_junk = probability is not None and probability >= classifier.threshold
    typer.echo(f"Message: {message_path}")
    typer.echo(f"Mailbox: {target}")
    typer.echo(f"Junk probability: {'n/a' if probability is None else f'{probability:.3f}'}")
    typer.echo(f"Decision: {'junk' if is_junk else 'good'}")


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _load_environment(state: CLIState) -> Config:
    try:
        config = load_config(state.config_path)
        configure_logging(config.logging, config.root_dir)
    except ConfigError as exc:
        _config_failure(exc)
    if state.dry_run and not config.dry_run:
        config = replace(config, dry_run=True)
    return config


def _resolve_mailbox(config: Config, path: Path | None) -> Mailbox:
    if path is None:
        return config.maildirs[0]
    wanted = Mailbox(path)
    if wanted in config.maildirs:
        return wanted
    typer.secho(f"Unknown maildir '{path}'.", fg=typer.colors.RED, err=True)
    raise typer.Exit(1) from None


def _config_failure(exc: ConfigError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(2) from exc


def _fail(message: str, exc: Exception) -> NoReturn:
    LOGGER.critical("%s: %s", message, exc)
    typer.secho(f"{message}: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(1) from exc


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main"]
