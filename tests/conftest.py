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

"""Shared fixtures: in-memory audio engine and a fully wired playback core."""

import asyncio
import itertools

import pytest

from core.autoplay import AutoplayReplenisher
from core.duplicates import DuplicateFilter
from core.engine import SearchOptions, SearchResult
from core.queue import QueueOrderingPolicy
from core.recovery import PlaybackRecoveryController
from core.settings import PlaybackSettings
from core.similarity import TitleSimilarity
from core.state import GuildStateRegistry
from core.track import TrackRecord, TrackSource

GUILD_ID = 1001

_urls = itertools.count(1)


def make_track(
    title: str,
    url: str | None = None,
    author: str = "",
    duration: int = 200,
    source: TrackSource = TrackSource.MANUAL,
    requester_id: str = "42",
) -> TrackRecord:
    return TrackRecord(
        url=url or f"https://youtu.be/track{next(_urls)}",
        title=title,
        author=author,
        duration_seconds=duration,
        requester_id=requester_id,
        source=source,
    )


class FakeEngine:
    """AudioEngine stand-in. Records every call; search results are scripted per query."""

    def __init__(self) -> None:
        self.results: dict[str, list[TrackRecord]] = {}
        self.default_results: list[TrackRecord] = []
        self.search_error: Exception | None = None
        self.search_gate: asyncio.Event | None = None
        self.searches: list[tuple[str, SearchOptions]] = []

        self.calls: list[tuple] = []
        self.played: list[TrackRecord] = []
        self.connected = True
        self.playing: dict[int, bool] = {}
        self.rejoin_result = True
        self.resume_restores_playback = True
        self.play_errors: dict[str, Exception] = {}

    async def search(self, query: str, options: SearchOptions) -> SearchResult:
        self.searches.append((query, options))
        if self.search_gate is not None:
            await self.search_gate.wait()
        if self.search_error is not None:
            raise self.search_error
        return SearchResult(tuple(self.results.get(query, self.default_results)))

    async def connect(self, guild_id: int, channel_id: int) -> None:
        self.calls.append(("connect", guild_id, channel_id))
        self.connected = True

    async def disconnect(self, guild_id: int) -> None:
        self.calls.append(("disconnect", guild_id))
        self.connected = False
        self.playing.pop(guild_id, None)

    async def rejoin(self, guild_id: int) -> bool:
        self.calls.append(("rejoin", guild_id))
        self.connected = self.rejoin_result
        return self.rejoin_result

    def is_connected(self, guild_id: int) -> bool:
        return self.connected

    def is_playing(self, guild_id: int) -> bool:
        return self.playing.get(guild_id, False)

    async def play(self, guild_id: int, track: TrackRecord) -> None:
        self.calls.append(("play", guild_id, track.url))
        if track.url in self.play_errors:
            raise self.play_errors[track.url]
        self.played.append(track)
        self.playing[guild_id] = True

    async def pause(self, guild_id: int) -> None:
        self.calls.append(("pause", guild_id))
        self.playing[guild_id] = False

    async def resume(self, guild_id: int) -> None:
        self.calls.append(("resume", guild_id))
        if self.resume_restores_playback:
            self.playing[guild_id] = True

    async def stop(self, guild_id: int) -> None:
        self.calls.append(("stop", guild_id))
        self.playing[guild_id] = False

    async def set_volume(self, guild_id: int, volume: int) -> None:
        self.calls.append(("volume", guild_id, volume))

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def settings() -> PlaybackSettings:
    return PlaybackSettings(recovery_backoff_seconds=0.01, autoplay_enabled=False)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def registry(settings) -> GuildStateRegistry:
    return GuildStateRegistry(settings)


@pytest.fixture
def duplicates(settings) -> DuplicateFilter:
    return DuplicateFilter(TitleSimilarity(settings.similarity))


@pytest.fixture
def policy(duplicates, settings) -> QueueOrderingPolicy:
    return QueueOrderingPolicy(duplicates, settings.max_autoplay_tracks)


@pytest.fixture
def replenisher(engine, policy, duplicates, settings) -> AutoplayReplenisher:
    return AutoplayReplenisher(engine, policy, duplicates, settings, requester_id="999")


@pytest.fixture
def controller(registry, engine, policy, replenisher, settings) -> PlaybackRecoveryController:
    return PlaybackRecoveryController(registry, engine, policy, replenisher, settings)


@pytest.fixture
def state(registry):
    return registry.get_or_create(GUILD_ID)
