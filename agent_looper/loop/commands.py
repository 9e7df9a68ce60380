"""Command interpreter for loop control input.

Turns a raw instruction into a Command, accepting either the text protocol
(``start <task>``, ``stop``, ``status``, ``add_pending <task>``) or a JSON
object with ``type`` and ``task`` fields.
"""

from __future__ import annotations

import json
import logging
from typing import Union

import pydantic as pd

from agent_looper.loop.contracts import Command, UnrecognizedCommand

logger = logging.getLogger(__name__)

COMMAND_ALIASES = {
    "start": "start",
    "stop": "stop",
    "status": "status",
    "add_pending": "add_pending",
    "add-pending": "add_pending",
}

ParsedCommand = Union[Command, UnrecognizedCommand]


def _first_error(exc: pd.ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = errors[0].get("msg", str(exc))
    return message.removeprefix("Value error, ")


def _parse_json_command(raw: str) -> ParsedCommand | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None

    if not isinstance(data, dict) or "type" not in data:
        return None

    try:
        return Command.model_validate(data)
    except pd.ValidationError as e:
        return UnrecognizedCommand(raw=raw, reason=_first_error(e))


def parse_command(raw_input: str, implicit_start: bool = False) -> ParsedCommand:
    """Parse raw input into a command.

    Args:
        raw_input: Instruction text or JSON object.
        implicit_start: Treat free text with an unknown leading token as ``start <text>``.

    Returns:
        Command on success, UnrecognizedCommand describing the problem otherwise.

    Examples:
        >>> parse_command("start build the lexer")
        Command(type='start', task='build the lexer')
        >>> parse_command("pause").reason
        "unknown command 'pause'"
    """
    text = raw_input.strip()
    if not text:
        return UnrecognizedCommand(raw=raw_input, reason="empty input")

    if text.startswith("{"):
        parsed = _parse_json_command(text)
        if parsed is not None:
            logger.debug(f"Parsed JSON command: {parsed!r}")
            return parsed

    parts = text.split(None, 1)
    head = parts[0]
    rest = parts[1] if len(parts) > 1 else ""
    command_type = COMMAND_ALIASES.get(head.lower())

    if command_type is None:
        if implicit_start:
            return Command(type="start", task=text)
        return UnrecognizedCommand(raw=raw_input, reason=f"unknown command '{head}'")

    if command_type in ("stop", "status") and rest.strip():
        return UnrecognizedCommand(
            raw=raw_input, reason=f"'{command_type}' takes no arguments"
        )

    try:
        return Command(type=command_type, task=rest or None)
    except pd.ValidationError as e:
        return UnrecognizedCommand(raw=raw_input, reason=_first_error(e))
