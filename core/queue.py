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
Queue Ordering

Where new tracks land in a guild's queue:

    [manual, manual, ...][autoplay, autoplay, ...]
                        ^ manual requests go here

Play-next requests go to the very front. Autoplay tracks are appended.
Every insert is filtered through DuplicateFilter first.
"""

import random
from collections.abc import Iterable
from dataclasses import dataclass

from loguru import logger

from core.duplicates import DuplicateFilter
from core.state import GuildPlaybackState
from core.track import TrackRecord, TrackSource


@dataclass(frozen=True, slots=True)
class InsertResult:
    """Outcome of QueueOrderingPolicy.insert().

    Attributes:
        added: Tracks actually queued, tagged with their source
        dropped: Candidates rejected as duplicates
        position: Queue index of the first added track (None when nothing was added)
    """

    added: tuple[TrackRecord, ...] = ()
    dropped: int = 0
    position: int | None = None

    @property
    def count(self) -> int:
        return len(self.added)

    def __bool__(self) -> bool:
        return bool(self.added)


class QueueOrderingPolicy:
    """Decides insertion order for manual and autoplay tracks.

    Args:
        duplicates: Filter applied to every batch before insertion
        max_autoplay_tracks: Cap for the consecutive-autoplay counter
    """

    def __init__(self, duplicates: DuplicateFilter, max_autoplay_tracks: int = 50) -> None:
        self.duplicates = duplicates
        self.max_autoplay_tracks = max_autoplay_tracks

    @staticmethod
    def first_autoplay_index(state: GuildPlaybackState) -> int:
        """Index of the first autoplay track, or len(queue) when there is none."""
        return next(
            (i for i, track in enumerate(state.queue) if track.is_autoplay),
            len(state.queue),
        )

    def insert(
        self,
        state: GuildPlaybackState,
        tracks: Iterable[TrackRecord],
        *,
        manual: bool,
        play_immediately: bool = False,
    ) -> InsertResult:
        """Dedup ``tracks`` and queue the survivors.

        Manual inserts reset the autoplay counter; autoplay inserts raise it
        by the number of tracks added, never past the cap. An empty batch
        after dedup leaves the state untouched.
        """
        candidates = list(tracks)
        accepted = self.duplicates.filter_duplicates(candidates, state)
        dropped = len(candidates) - len(accepted)
        if not accepted:
            if candidates:
                logger.debug(f"guild {state.guild_id}: nothing queued, {dropped} duplicate(s) dropped")
            return InsertResult(dropped=dropped)

        source = TrackSource.MANUAL if manual else TrackSource.AUTOPLAY
        added = [track.with_source(source) for track in accepted]

        if play_immediately:
            position = 0
        elif manual:
            position = self.first_autoplay_index(state)
        else:
            position = len(state.queue)
        state.queue[position:position] = added

        if manual:
            state.autoplay_count = 0
        else:
            state.autoplay_count = min(self.max_autoplay_tracks, state.autoplay_count + len(added))

        logger.debug(
            f"guild {state.guild_id}: queued {len(added)} {source.value} track(s) at {position}, "
            f"autoplay count {state.autoplay_count}"
        )
        return InsertResult(added=tuple(added), dropped=dropped, position=position)

    @staticmethod
    def requeue(state: GuildPlaybackState, track: TrackRecord, *, front: bool) -> None:
        """Put a track back without dedup (repeat modes, failed dispatch).

        At the back, manual tracks go in ahead of the autoplay run.
        """
        if front:
            state.queue.insert(0, track)
        elif track.is_autoplay:
            state.queue.append(track)
        else:
            state.queue.insert(QueueOrderingPolicy.first_autoplay_index(state), track)

    @staticmethod
    def pop_next(state: GuildPlaybackState) -> TrackRecord | None:
        return state.queue.pop(0) if state.queue else None

    @staticmethod
    def remove(state: GuildPlaybackState, index: int) -> TrackRecord | None:
        """Remove the track at ``index`` (0-based). Returns None when out of range."""
        if 0 <= index < len(state.queue):
            return state.queue.pop(index)
        return None

    @staticmethod
    def move(state: GuildPlaybackState, src: int, dst: int) -> TrackRecord | None:
        """Move the track at ``src`` to ``dst`` (0-based, clamped). Returns the moved track.

        The track takes the source of the block it lands in: dropped at or
        before the first autoplay track it becomes manual, further back it
        becomes autoplay.
        """
        if not 0 <= src < len(state.queue):
            return None
        track = state.queue.pop(src)
        dst = max(0, min(dst, len(state.queue)))
        source = (
            TrackSource.MANUAL
            if dst <= QueueOrderingPolicy.first_autoplay_index(state)
            else TrackSource.AUTOPLAY
        )
        moved = track.with_source(source)
        state.queue.insert(dst, moved)
        if moved is not track:
            logger.debug(f"guild {state.guild_id}: {track.title!r} moved into the {source.value} block")
        return moved

    @staticmethod
    def shuffle(state: GuildPlaybackState) -> int:
        """Shuffle manual and autoplay tracks separately. Returns the queue length."""
        split = QueueOrderingPolicy.first_autoplay_index(state)
        manual, autoplay = state.queue[:split], state.queue[split:]
        random.shuffle(manual)
        random.shuffle(autoplay)
        state.queue[:] = manual + autoplay
        return len(state.queue)

    @staticmethod
    def clear(state: GuildPlaybackState) -> int:
        removed = len(state.queue)
        state.queue.clear()
        return removed
