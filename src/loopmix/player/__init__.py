"""Audio playback module."""

from loopmix.player.base import (
    Player,
    PlayerBackend,
    PlayerState,
    check_position,
    check_speed,
    check_volume,
)
from loopmix.player.mock_player import MockPlayerBackend

__all__ = [
    "Player",
    "PlayerBackend",
    "PlayerState",
    "MockPlayerBackend",
    "check_position",
    "check_speed",
    "check_volume",
]
