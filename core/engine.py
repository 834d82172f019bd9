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
Audio Engine Interfaces

The core never talks to Lavalink directly. It depends on two capabilities:
SearchProvider (resolve a query into TrackRecords) and AudioEngine (voice
connection and transport control). systems/lavalink.py implements both on
top of mafic; tests use in-memory fakes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from core.track import TrackRecord


class SearchMode(str, Enum):
    """Search backends. Values are the Lavalink search prefixes."""

    YOUTUBE = "ytsearch"
    YOUTUBE_MUSIC = "ytmsearch"
    SOUNDCLOUD = "scsearch"
    URL = "url"  # direct lookup, no prefix


@dataclass(frozen=True, slots=True)
class SearchOptions:
    """
    Attributes:
        mode: Search backend, or URL for a direct lookup
        requester_id: Stamped on every returned TrackRecord
        guild_id: Guild the search runs for (engines may route by it)
        limit: Maximum number of tracks returned
    """

    mode: SearchMode = SearchMode.YOUTUBE
    requester_id: str = ""
    guild_id: int | None = None
    limit: int = 10


@dataclass(frozen=True, slots=True)
class SearchResult:
    tracks: tuple[TrackRecord, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.tracks)


class SearchProvider(Protocol):
    async def search(self, query: str, options: SearchOptions) -> SearchResult:
        """Resolve ``query``. Raises on backend/transport failure, returns an empty result on no match."""
        ...


class AudioEngine(SearchProvider, Protocol):
    """Per-guild voice connection and transport control."""

    async def connect(self, guild_id: int, channel_id: int) -> None: ...

    async def disconnect(self, guild_id: int) -> None: ...

    async def rejoin(self, guild_id: int) -> bool:
        """Drop and re-establish the voice connection. Returns True if connected afterwards."""
        ...

    def is_connected(self, guild_id: int) -> bool: ...

    def is_playing(self, guild_id: int) -> bool: ...

    async def play(self, guild_id: int, track: TrackRecord) -> None: ...

    async def pause(self, guild_id: int) -> None: ...

    async def resume(self, guild_id: int) -> None: ...

    async def stop(self, guild_id: int) -> None: ...

    async def set_volume(self, guild_id: int, volume: int) -> None: ...
