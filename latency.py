"""
Receiver-side handling of ``sync`` events.

A viewer corrects its local player from a sync event by compensating for the
time the event spent in flight, and only hard-seeks when it has drifted
outside the tolerance band. Small drift is left to natural playback so the
picture does not stutter from constant micro-seeks.

The server never calls these; they are for Python clients of the room
WebSocket (bots, test harnesses, headless players) that drive a local player.
"""

import time
from typing import Optional

from constants import SYNC_TOLERANCE_SECONDS


def adjusted_time(action: str, event_time: float, server_timestamp: int, local_now: Optional[float] = None) -> float:
    """Where the host's player is now, from a sync event sent at ``server_timestamp`` (ms)."""
    if action != "play":
        return event_time
    local_now = time.time() if local_now is None else local_now
    latency = max(0.0, local_now - server_timestamp / 1000)
    return event_time + latency


def needs_seek(player_time: float, target: float, tolerance: float = SYNC_TOLERANCE_SECONDS) -> bool:
    return abs(player_time - target) > tolerance


def seek_target(event: dict, player_time: float, local_now: Optional[float] = None) -> Optional[float]:
    """Return the position to hard-seek to for a ``sync`` event, or None to keep playing."""
    target = adjusted_time(event["action"], event["time"], event["serverTimestamp"], local_now)
    if needs_seek(player_time, target):
        return target
    return None
