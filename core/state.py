# Copyright (C) 2026 grodz
#
# This file is part of Cadence.
#
# Cadence is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
Guild Playback State

Per-guild queue, history and counters, plus the registry that owns them.

All mutations here are synchronous. Callers running on the event loop get
atomic updates for free as long as they don't await halfway through a
queue change.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from itertools import count

from loguru import logger

from core.settings import PlaybackSettings
from core.track import TrackRecord


_GENERATIONS = count(1)

MIN_VOLUME = 1
MAX_VOLUME = 100


class RepeatMode(str, Enum):
    OFF = "off"
    TRACK = "track"
    QUEUE = "queue"


class GuildStateMissing(LookupError):
    """Raised when a guild operation runs before get_or_create()."""


@dataclass(slots=True, eq=False)
class GuildPlaybackState:
    """Mutable playback state for one guild.

    ``generation`` is unique per instance and never reused, so a timer or
    callback that captured it can tell whether the state it was scheduled
    for is still the live one. ``destroyed`` flips when the registry drops
    the state; anything still holding a reference must treat it as dead.
    """

    guild_id: int
    history_size: int = 50
    volume: int = 50
    autoplay_enabled: bool = True
    current_track: TrackRecord | None = None
    queue: list[TrackRecord] = field(default_factory=list)
    history: deque[TrackRecord] = field(default_factory=deque)
    autoplay_count: int = 0
    repeat_mode: RepeatMode = RepeatMode.OFF
    last_played: TrackRecord | None = None
    text_channel_id: int | None = None
    generation: int = field(default_factory=lambda: next(_GENERATIONS))
    destroyed: bool = False
    recovery_attempted: bool = False
    # Url whose failure end is absorbed because recovery keeps playing it
    awaiting_failure_end: str | None = None
    pending_tasks: set[asyncio.Task] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.history = deque(self.history, maxlen=max(1, self.history_size))
        self.volume = max(MIN_VOLUME, min(MAX_VOLUME, int(self.volume)))

    @property
    def is_idle(self) -> bool:
        return self.current_track is None

    @property
    def seed_track(self) -> TrackRecord | None:
        """Track autoplay derives recommendations from."""
        return self.current_track or self.last_played

    def set_volume(self, volume: int) -> None:
        if not MIN_VOLUME <= volume <= MAX_VOLUME:
            raise ValueError(f"volume must be between {MIN_VOLUME} and {MAX_VOLUME}, got {volume}")
        self.volume = volume

    def is_alive(self, generation: int) -> bool:
        return not self.destroyed and self.generation == generation

    def is_current(self, track: TrackRecord | None) -> bool:
        """True if ``track`` is the one currently dispatched (compared by url)."""
        return (
            track is not None
            and self.current_track is not None
            and self.current_track.url == track.url
        )

    def track_task(self, task: asyncio.Task) -> asyncio.Task:
        """Tie a background task to this state's lifetime."""
        self.pending_tasks.add(task)
        task.add_done_callback(self.pending_tasks.discard)
        return task

    def cancel_pending_tasks(self) -> None:
        for task in list(self.pending_tasks):
            if not task.done():
                task.cancel()
        self.pending_tasks.clear()


class GuildStateRegistry:
    """Owns every GuildPlaybackState, keyed by guild id.

    Args:
        settings: Defaults applied to newly created states
    """

    def __init__(self, settings: PlaybackSettings | None = None) -> None:
        self.settings = settings or PlaybackSettings()
        self._states: dict[int, GuildPlaybackState] = {}

    def __contains__(self, guild_id: int) -> bool:
        return guild_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get_or_create(self, guild_id: int) -> GuildPlaybackState:
        state = self._states.get(guild_id)
        if state is None:
            state = GuildPlaybackState(
                guild_id=guild_id,
                history_size=self.settings.history_size,
                volume=self.settings.default_volume,
                autoplay_enabled=self.settings.autoplay_enabled,
            )
            self._states[guild_id] = state
            logger.debug(f"guild {guild_id}: playback state created (generation {state.generation})")
        return state

    def get(self, guild_id: int) -> GuildPlaybackState | None:
        return self._states.get(guild_id)

    def require(self, guild_id: int) -> GuildPlaybackState:
        try:
            return self._states[guild_id]
        except KeyError:
            raise GuildStateMissing(f"no playback state for guild {guild_id}") from None

    def record_now_playing(self, guild_id: int, track: TrackRecord) -> None:
        """Mark ``track`` as current. History is left alone."""
        self.require(guild_id).current_track = track

    def record_finished(self, guild_id: int) -> TrackRecord | None:
        """Move the current track to the front of history and clear it.

        Returns the finished track, or None if nothing was current.
        """
        state = self.require(guild_id)
        finished = state.current_track
        if finished is None:
            return None
        state.history.appendleft(finished)
        state.last_played = finished
        state.current_track = None
        return finished

    def destroy(self, guild_id: int) -> bool:
        """Drop all state for a guild and cancel its pending timers.

        Returns True if there was anything to drop.
        """
        state = self._states.pop(guild_id, None)
        if state is None:
            return False
        state.destroyed = True
        state.cancel_pending_tasks()
        logger.debug(f"guild {guild_id}: playback state destroyed")
        return True

    def clear(self) -> None:
        for guild_id in list(self._states):
            self.destroy(guild_id)
