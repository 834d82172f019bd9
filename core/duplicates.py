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

"""Drops candidate tracks that repeat something already current, queued or recently played."""

from collections.abc import Iterable, Iterator

from loguru import logger

from core.similarity import TitleSimilarity
from core.state import GuildPlaybackState
from core.track import TrackRecord


class DuplicateFilter:
    """Dedup against a guild's current track, queue and history.

    Never mutates the state it reads.
    """

    def __init__(self, similarity: TitleSimilarity | None = None) -> None:
        self.similarity = similarity or TitleSimilarity()

    @staticmethod
    def _known_tracks(state: GuildPlaybackState) -> Iterator[TrackRecord]:
        if state.current_track is not None:
            yield state.current_track
        yield from state.queue
        yield from state.history

    def is_duplicate(
        self,
        candidate: TrackRecord,
        state: GuildPlaybackState,
        accepted: Iterable[TrackRecord] = (),
    ) -> bool:
        for known in self._known_tracks(state):
            if self.similarity.is_similar(candidate.title, known.title):
                return True
        return any(self.similarity.is_similar(candidate.title, t.title) for t in accepted)

    def filter_duplicates(
        self, candidates: Iterable[TrackRecord], state: GuildPlaybackState
    ) -> list[TrackRecord]:
        """Return candidates that repeat nothing in the state or earlier in the batch, order kept."""
        accepted: list[TrackRecord] = []
        for candidate in candidates:
            if self.is_duplicate(candidate, state, accepted):
                logger.debug(f"guild {state.guild_id}: dropped duplicate {candidate.title!r}")
                continue
            accepted.append(candidate)
        return accepted
