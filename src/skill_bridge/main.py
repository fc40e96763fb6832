"""CLI entrypoint for skill-bridge."""

from pathlib import Path
from typing import TextIO

import rich_click as click

from skill_bridge import __version__
from skill_bridge.config import Settings
from skill_bridge.controllers import (
    BridgeCliController,
    ClassifyCommand,
    ProbeCommand,
    ServeCommand,
    SessionsListCommand,
    SessionsPruneCommand,
    SessionsShowCommand,
)
from skill_bridge.logging_config import setup_logging
from skill_bridge.orchestrator.models import ConversationStatus

click.rich_click.USE_MARKDOWN = True
BRIDGE_CONTROLLER = BridgeCliController()


@click.group()
@click.version_option(version=__version__, prog_name="skill-bridge")
def skill_bridge() -> None:
    """Chat to skill CLI bridge.

    Configuration is read from `SKILL_BRIDGE_*` environment variables.
    """

    settings = Settings.from_env()
    setup_logging(settings.logging.level, settings.logging.log_dir)


@skill_bridge.command("serve")
@click.option(
    "--cli-path",
    default=None,
    help="Skill CLI command, overrides SKILL_BRIDGE_CLI_PATH.",
)
@click.option("--webhook-url", default=None, help="Deliver messages to this webhook.")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--auto-continue/--no-auto-continue",
    default=None,
    help="Run the next phase automatically after a Continue decision.",
)
def serve(
    cli_path: str | None,
    webhook_url: str | None,
    db_path: Path | None,
    auto_continue: bool | None,
) -> None:
    """Read chat messages from stdin, one per line, until EOF.

    Plain lines are messages from a local console user. Lines starting with `{`
    are parsed as chat platform event payloads.
    """

    result = BRIDGE_CONTROLLER.serve(
        ServeCommand(
            stream=click.get_text_stream("stdin"),
            cli_path=cli_path,
            webhook_url=webhook_url,
            db_path=db_path,
            auto_continue=auto_continue,
        ),
    )
    _emit_lines(result.lines)


@skill_bridge.command("classify")
@click.argument("file", type=click.File("r", encoding="utf-8"), default="-")
@click.option(
    "--exit-code",
    type=int,
    default=0,
    show_default=True,
    help="Exit code the captured run finished with.",
)
def classify(file: TextIO, exit_code: int) -> None:
    """Classify captured tool output from FILE (stdin by default) and print JSON."""

    _emit_lines(
        BRIDGE_CONTROLLER.classify(ClassifyCommand(text=file.read(), exit_code=exit_code)),
    )


@skill_bridge.command("probe")
@click.option(
    "--cli-path",
    default=None,
    help="Skill CLI command, overrides SKILL_BRIDGE_CLI_PATH.",
)
def probe(cli_path: str | None) -> None:
    """Check that the skill CLI starts and report its version."""

    result = BRIDGE_CONTROLLER.probe(ProbeCommand(cli_path=cli_path))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Skill CLI is not available.")


@skill_bridge.group()
def sessions() -> None:
    """Persisted conversation commands."""


@sessions.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in ConversationStatus]),
    default=None,
    help="Only show conversations with this status.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max conversations to list.",
)
def sessions_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List persisted conversations, most recent first."""

    _emit_lines(
        BRIDGE_CONTROLLER.list_sessions(
            SessionsListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@sessions.command("show")
@click.argument("conversation_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def sessions_show(conversation_id: str, db_path: Path | None) -> None:
    """Print the Markdown transcript of one conversation."""

    result = BRIDGE_CONTROLLER.show_session(
        SessionsShowCommand(db_path=db_path, conversation_id=conversation_id),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Conversation not found.")


@sessions.command("prune")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--older-than-seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Idle threshold; defaults to SKILL_BRIDGE_SESSION_TIMEOUT.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Only report what would be deleted.")
def sessions_prune(db_path: Path | None, older_than_seconds: int | None, dry_run: bool) -> None:
    """Delete persisted conversations idle longer than the threshold."""

    _emit_lines(
        BRIDGE_CONTROLLER.prune_sessions(
            SessionsPruneCommand(
                db_path=db_path,
                older_than_seconds=older_than_seconds,
                dry_run=dry_run,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    skill_bridge()
