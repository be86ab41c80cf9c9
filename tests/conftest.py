"""Shared test fixtures."""

from pathlib import Path

import pytest

from kite.channels.store import Channels
from kite.messages.store import Messages
from kite.uploads import UploadSpace


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "kite.db"


@pytest.fixture
def channels(db_path: Path) -> Channels:
    """A Channels registry backed by a temp database."""
    return Channels(db_path=db_path)


@pytest.fixture
def messages(channels: Channels, db_path: Path) -> Messages:
    """A Messages store sharing the registry's temp database."""
    return Messages(channels, db_path=db_path)


@pytest.fixture
def uploads(tmp_path: Path):
    """An UploadSpace rooted in a temporary directory."""
    UploadSpace._reset()
    space = UploadSpace(root=tmp_path / "uploads", base_url="https://kite.example.com")
    yield space
    UploadSpace._reset()
