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
Track Record

Immutable value type describing one playable track as the queue sees it.
The audio engine resolves urls into these records; everything after that
(queue, history, dedup, recovery) works on TrackRecord only.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


class TrackSource(str, Enum):
    """Why a track ended up in the queue."""

    MANUAL = "manual"
    AUTOPLAY = "autoplay"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(seconds: int) -> str:
    """Format seconds as M:SS or H:MM:SS. Unknown/negative durations show 0:00."""
    if not seconds or seconds < 0:
        return "0:00"
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


@dataclass(frozen=True, slots=True)
class TrackRecord:
    """
    One resolved track.

    Records are never mutated. Re-tagging (e.g. stamping the source when a
    track is queued, or carrying the requester over to a substitute found
    during recovery) goes through ``with_source`` / ``replace``.

    Attributes:
        url: Playable url the engine accepts
        title: Display title as reported by the search backend
        author: Uploader/artist as reported by the backend (may be empty)
        thumbnail: Artwork url, if known
        duration_seconds: Length in seconds (0 = unknown / live stream)
        requester_id: Discord user id of whoever asked for it (bot id for autoplay)
        requested_at: When the request was made (UTC)
        source: MANUAL or AUTOPLAY
    """

    url: str
    title: str
    author: str = ""
    thumbnail: str | None = None
    duration_seconds: int = 0
    requester_id: str = ""
    requested_at: datetime = field(default_factory=_utcnow)
    source: TrackSource = TrackSource.MANUAL

    @property
    def is_autoplay(self) -> bool:
        return self.source is TrackSource.AUTOPLAY

    @property
    def display_duration(self) -> str:
        return format_duration(self.duration_seconds)

    @property
    def display_name(self) -> str:
        """'Author - Title' unless the title already carries the author."""
        if self.author and self.author.lower() not in self.title.lower():
            return f"{self.author} - {self.title}"
        return self.title

    def with_source(self, source: TrackSource) -> "TrackRecord":
        if self.source is source:
            return self
        return replace(self, source=source)

    def substitute(self, other: "TrackRecord") -> "TrackRecord":
        """Return ``other`` carrying this track's requester, request time and source."""
        return replace(
            other,
            requester_id=self.requester_id,
            requested_at=self.requested_at,
            source=self.source,
        )
