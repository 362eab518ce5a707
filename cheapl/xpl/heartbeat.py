"""Heartbeat cadence for the xPL service.

A fresh service does not know whether a hub is listening. It heartbeats
quickly while in *discovery*, backs off to a *lonely* cadence once the
discovery window is spent, and settles on the regular heartbeat period as
soon as its own heartbeat has been echoed back by a hub.

    DISCOVERY --(window spent)--> LONELY
        \\                          |
         \\--(echo seen)--> CONNECTED <--(echo seen)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class HeartbeatPhase(str, Enum):
    DISCOVERY = "discovery"
    LONELY = "lonely"
    CONNECTED = "connected"


def next_phase(
    phase: HeartbeatPhase,
    sent: int,
    connected: bool,
    max_discovery_count: int,
) -> HeartbeatPhase:
    """Phase to use for the next tick.

    *sent* is the number of discovery heartbeats sent so far.
    """
    if connected:
        return HeartbeatPhase.CONNECTED
    if phase is HeartbeatPhase.DISCOVERY and sent >= max_discovery_count:
        return HeartbeatPhase.LONELY
    return phase


@dataclass
class HeartbeatSchedule:
    """Timer state for the heartbeat chain.

    Parameters
    ----------
    discovery_period:
        Seconds between heartbeats while looking for a hub (default 3).
    lonely_period:
        Seconds between heartbeats once discovery gave up (default 30).
    heartbeat_period:
        Seconds between heartbeats when a hub echoes us (default 300).
    discovery_window:
        Upper bound on the length of the discovery phase (default 120).
    """

    discovery_period: float = 3.0
    lonely_period: float = 30.0
    heartbeat_period: float = 300.0
    discovery_window: float = 120.0
    phase: HeartbeatPhase = HeartbeatPhase.DISCOVERY
    discovery_count: int = field(default=0)

    @property
    def max_discovery_count(self) -> int:
        return int(self.discovery_window // self.discovery_period)

    @property
    def initial_delay(self) -> float:
        return self.discovery_period

    @property
    def interval_minutes(self) -> int:
        """Heartbeat period as announced in the ``interval`` body key."""
        return max(1, int(self.heartbeat_period // 60))

    def delay_for(self, phase: HeartbeatPhase) -> float:
        if phase is HeartbeatPhase.CONNECTED:
            return self.heartbeat_period
        if phase is HeartbeatPhase.LONELY:
            return self.lonely_period
        return self.discovery_period

    def tick(self, connected: bool) -> float:
        """Account for one timer-driven heartbeat and return the next delay."""
        if self.phase is HeartbeatPhase.DISCOVERY and not connected:
            self.discovery_count += 1
        self.phase = next_phase(
            self.phase, self.discovery_count, connected, self.max_discovery_count
        )
        return self.delay_for(self.phase)
