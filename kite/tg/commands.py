"""Slash-command parsing for the Telegram connector."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from kite.errors import ValidationError

# Deep-link payloads (``/start host__name``) separate their parts with "__"
# so single underscores in channel names survive.
SUB_COMMAND_SEPARATOR = "__"


class SubCommandType(Enum):
    JOIN = "join"
    HOST = "host"

    @classmethod
    def parse(cls, text: str) -> SubCommandType:
        try:
            return cls(text)
        except ValueError:
            msg = f"Unsupported subCommand {text}"
            raise ValidationError(msg) from None


@dataclass
class SubCommand:
    type: SubCommandType
    args: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, args: str) -> SubCommand | None:
        """Parse ``<type>__<arg>[__<arg>...]``; plain arguments yield None."""
        parts = args.split(SUB_COMMAND_SEPARATOR)
        while parts and not parts[-1]:
            parts.pop()
        if len(parts) < 2:
            return None
        return cls(SubCommandType.parse(parts[0]), parts[1:])


@dataclass
class Command:
    """A bot command with its raw argument string.

    Attributes:
        name: Lower-cased command including the slash, without ``@botname``.
        args: Remaining message text, stripped.
        sub_command: Parsed deep-link sub-command, if any.
    """

    name: str
    args: str = ""
    sub_command: SubCommand | None = None


def parse_command(command_text: str, args: str) -> Command:
    """Build a Command from the ``bot_command`` entity text and what follows it."""
    name = command_text.lower().split("@", 1)[0]
    args = args.strip()
    return Command(name=name, args=args, sub_command=SubCommand.parse(args))
