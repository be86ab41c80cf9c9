"""Channel membership registry."""

from kite.channels.models import Channel, Member
from kite.channels.store import Channels

__all__ = [
    "Channel",
    "Channels",
    "Member",
]
