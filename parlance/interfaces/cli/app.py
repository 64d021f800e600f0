"""Parlance CLI Application.

This module implements the command-line interface for Parlance, for
inspecting token estimates, budgets and assembled turns offline.

Commands:
    estimate: Estimate the token cost of a text
    budget: Show the token budget for a system prompt and injected context
    inspect: Assemble a turn against a JSON-Lines history file

Usage:
    parlance estimate "How far to the next port?"
    parlance budget --max-tokens 8000 --system-file persona.txt
    parlance inspect history.jsonl --system-file persona.txt --message "Hi"

Example:
    $ parlance inspect chat.jsonl --system-file ava.txt --message "Where now?" --last-summary-end 30
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click
from pydantic import ValidationError

from parlance import __version__
from parlance.config import get_settings
from parlance.context import (
    ConversationContextManager,
    Message,
    allocate_token_budget,
)
from parlance.core.exceptions import ParlanceError
from parlance.core.storage import MemoryCheckpointStore, MemoryLocking, MemoryMessageHistory
from parlance.telemetry import estimate_tokens


# =============================================================================
# Module Logger
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CLI_CONVERSATION_ID = "cli"

COLORS = {
    "reset": "\033[0m",
    "red": "\033[31m",
    "yellow": "\033[33m",
}


def colorize(text: str, color: str) -> str:
    """Apply ANSI color to text."""
    if not sys.stderr.isatty():
        return text
    return f"{COLORS.get(color, '')}{text}{COLORS['reset']}"


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _read_text(path: Optional[Path]) -> str:
    if path is None:
        return ""
    return path.read_text(encoding="utf-8")


def _load_history(path: Path) -> list[Message]:
    """Load a JSON-Lines history file, skipping blank lines.

    Raises:
        click.ClickException: On an invalid record or a repeated sequence number.
    """
    messages = []
    seen: dict[int, int] = {}
    for line_number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            message = Message.from_record(json.loads(line))
        except (json.JSONDecodeError, ValidationError) as e:
            raise click.ClickException(f"{path.name}:{line_number}: invalid message record: {e}")
        if message.sequence_number in seen:
            raise click.ClickException(
                f"{path.name}:{line_number}: duplicate sequence number "
                f"{message.sequence_number} (first seen on line {seen[message.sequence_number]})"
            )
        seen[message.sequence_number] = line_number
        messages.append(message)
    return messages


# =============================================================================
# CLI Application
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="parlance")
@click.option("--debug/--no-debug", default=False, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Parlance - conversation context and token-budget inspection."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    log_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


@cli.command()
@click.argument("text", required=False)
@click.option(
    "--file", "-f", "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read the text from a file instead",
)
def estimate(text: Optional[str], file_path: Optional[Path]) -> None:
    """Estimate the token cost of TEXT.

    Example:
        parlance estimate '{"mood": "wary"}'
    """
    if file_path is not None:
        text = _read_text(file_path)
    if text is None:
        raise click.UsageError("Provide TEXT or --file")

    click.echo(estimate_tokens(text))


@cli.command()
@click.option("--max-tokens", "-m", type=click.IntRange(min=1), default=None,
              help="Context window size (defaults to settings)")
@click.option("--system-file", "-s", required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="File holding the system prompt")
@click.option("--context-file", "-c", default=None,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="File holding injected context (memories, world info)")
def budget(max_tokens: Optional[int], system_file: Path, context_file: Optional[Path]) -> None:
    """Show the token budget for a system prompt.

    Example:
        parlance budget --max-tokens 8000 --system-file persona.txt
    """
    settings = get_settings()
    allocation = allocate_token_budget(
        max_tokens or settings.context.max_context_tokens,
        _read_text(system_file),
        current_context=_read_text(context_file),
        safety_margin_ratio=settings.context.safety_margin_ratio,
        min_safety_margin=settings.context.min_safety_margin,
        warning_ratio=settings.context.warning_ratio,
    )
    _echo_json(allocation.to_dict())


@cli.command()
@click.argument("history_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--system-file", "-s", required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="File holding the system prompt")
@click.option("--message", "-m", "new_message", required=True,
              help="The new user message")
@click.option("--context-file", "-c", default=None,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="File holding injected context (memories, world info)")
@click.option("--last-summary-end", type=click.IntRange(min=0), default=None,
              help="Sequence number the last summary ended at")
@click.option("--max-tokens", type=click.IntRange(min=1), default=None,
              help="Context window size (defaults to settings)")
@click.pass_context
def inspect(
    ctx: click.Context,
    history_file: Path,
    system_file: Path,
    new_message: str,
    context_file: Optional[Path],
    last_summary_end: Optional[int],
    max_tokens: Optional[int],
) -> None:
    """Assemble a turn against HISTORY_FILE and show the result.

    HISTORY_FILE is JSON Lines, one message record per line.

    Example:
        parlance inspect chat.jsonl -s persona.txt -m "Where now?"
    """
    try:
        result = asyncio.run(
            _run_inspect(
                history=_load_history(history_file),
                system_prompt=_read_text(system_file),
                auxiliary_context=_read_text(context_file),
                new_message=new_message,
                last_summary_end=last_summary_end,
                max_tokens=max_tokens,
            )
        )
    except ParlanceError as e:
        click.echo(colorize(f"ERROR: {e}", "red"), err=True)
        if ctx.obj.get("debug"):
            logger.exception("Inspect failed")
        sys.exit(1)

    _echo_json(result)


async def _run_inspect(
    history: list[Message],
    system_prompt: str,
    auxiliary_context: str,
    new_message: str,
    last_summary_end: Optional[int],
    max_tokens: Optional[int],
) -> dict[str, Any]:
    history_store = MemoryMessageHistory()
    history_store.extend(CLI_CONVERSATION_ID, history)

    checkpoints = MemoryCheckpointStore()
    if last_summary_end is not None:
        await checkpoints.write(CLI_CONVERSATION_ID, last_summary_end)

    manager = ConversationContextManager(
        history_store,
        checkpoints,
        locking=MemoryLocking(),
        settings=get_settings(),
    )
    result = await manager.assemble(
        conversation_id=CLI_CONVERSATION_ID,
        system_prompt=system_prompt,
        auxiliary_context=auxiliary_context,
        new_user_message=new_message,
        max_context_tokens=max_tokens,
    )
    return result.to_dict()


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
