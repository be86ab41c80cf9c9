"""Tests for Telegram slash-command parsing."""

import pytest

from kite.errors import ValidationError
from kite.tg.commands import SubCommand, SubCommandType, parse_command


def test_plain_command() -> None:
    cmd = parse_command("/Join", "  support-desk ")
    assert cmd.name == "/join"
    assert cmd.args == "support-desk"
    assert cmd.sub_command is None


def test_strips_bot_username() -> None:
    assert parse_command("/host@KiteBot", "support-desk").name == "/host"


def test_no_args() -> None:
    cmd = parse_command("/help", "")
    assert cmd.args == ""
    assert cmd.sub_command is None


def test_deep_link_host() -> None:
    cmd = parse_command("/start", "host__support-desk")
    assert cmd.sub_command == SubCommand(SubCommandType.HOST, ["support-desk"])


def test_deep_link_join_with_member() -> None:
    cmd = parse_command("/start", "join__support_desk__abc")
    assert cmd.sub_command.type is SubCommandType.JOIN
    assert cmd.sub_command.args == ["support_desk", "abc"]


def test_trailing_separator_ignored() -> None:
    assert SubCommand.parse("join__support-desk__").args == ["support-desk"]


def test_single_underscore_is_not_a_separator() -> None:
    assert SubCommand.parse("support_desk") is None


def test_unsupported_sub_command() -> None:
    with pytest.raises(ValidationError, match="Unsupported subCommand drop"):
        parse_command("/start", "drop__support-desk")
