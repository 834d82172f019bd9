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

import asyncio

import pytest

from conftest import GUILD_ID, make_track
from core.autoplay import build_related_query, extract_tags, seed_artist
from core.track import TrackSource


@pytest.fixture
def seed():
    return make_track("Toto - Africa", url="https://youtu.be/africa", author="Toto")


@pytest.fixture
def autoplay_state(state, seed):
    state.autoplay_enabled = True
    state.current_track = seed
    return state


class TestRelatedQuery:
    def test_uses_uploader_as_artist(self):
        assert build_related_query(make_track("Africa", author="Toto")) == "Toto"

    @pytest.mark.parametrize("author", ["TotoVEVO", "Toto - Topic", "Toto Official"])
    def test_channel_noise_is_removed(self, author):
        assert seed_artist(make_track("Africa", author=author)) == "Toto"

    def test_falls_back_to_title_artist(self):
        track = make_track("Coldplay - Yellow (Official Audio)")
        assert build_related_query(track) == "coldplay"

    def test_adds_up_to_two_genre_tags(self):
        track = make_track("Band - Song (rock pop jazz)", author="Band")
        assert extract_tags(track) == ["rock", "pop", "jazz"]
        assert build_related_query(track) == "Band rock pop"

    def test_genre_words_must_stand_alone(self):
        assert extract_tags(make_track("Popular Rocket Song", author="Someone")) == []

    def test_title_words_without_artist(self):
        track = make_track("Bohemian Rhapsody (Official Video)")
        assert build_related_query(track) == "bohemian rhapsody"

    def test_nothing_usable(self):
        assert build_related_query(make_track("A b c")) == ""


class TestTargetQueueSize:
    def test_normal_depth(self, replenisher, state):
        assert replenisher.target_queue_size(state) == 8

    def test_shrinks_near_the_cap(self, replenisher, state, settings):
        state.autoplay_count = int(settings.max_autoplay_tracks * settings.autoplay_near_limit_ratio)
        assert replenisher.target_queue_size(state) == settings.autoplay_near_limit_queue_size


async def test_replenish_filters_and_stamps(replenisher, autoplay_state, engine, seed, settings):
    keep_a = make_track("Eagles - Hotel California", duration=0, requester_id="")
    keep_b = make_track("Adele - Rolling in the Deep", requester_id="")
    engine.default_results = [
        make_track("Toto - Africa (Remastered)", url=seed.url),
        make_track("Queen - Radio Jingle", duration=10),
        make_track("Some Band - Ten Hour Loop", duration=2000),
        make_track("Queen - Bohemian Rhapsody (Nightcore)"),
        make_track("Africa - Toto"),
        keep_a,
        keep_b,
    ]

    added = await replenisher.replenish(autoplay_state)

    assert added == 2
    assert [t.url for t in autoplay_state.queue] == [keep_a.url, keep_b.url]
    assert all(t.source is TrackSource.AUTOPLAY for t in autoplay_state.queue)
    assert all(t.requester_id == "999" for t in autoplay_state.queue)
    assert autoplay_state.autoplay_count == 2

    query, options = engine.searches[0]
    assert query == "Toto"
    assert options.mode is settings.autoplay_search_mode
    assert options.requester_id == "999"
    assert options.guild_id == GUILD_ID


async def test_replenish_at_cap_adds_nothing(replenisher, autoplay_state, engine, settings):
    engine.default_results = [make_track("Eagles - Hotel California")]
    autoplay_state.autoplay_count = settings.max_autoplay_tracks

    assert await replenisher.replenish(autoplay_state) == 0
    assert autoplay_state.queue == []
    assert engine.searches == []


async def test_replenish_clips_to_remaining_cap(replenisher, autoplay_state, engine, settings):
    engine.default_results = [make_track("Eagles - Hotel California"), make_track("Adele - Rolling in the Deep")]
    autoplay_state.autoplay_count = settings.max_autoplay_tracks - 1

    assert await replenisher.replenish(autoplay_state) == 1
    assert autoplay_state.autoplay_count == settings.max_autoplay_tracks


async def test_replenish_skips_full_queue(replenisher, autoplay_state, engine):
    autoplay_state.queue.extend(make_track(f"Queued song number {i}") for i in range(8))
    engine.default_results = [make_track("Eagles - Hotel California")]

    assert await replenisher.replenish(autoplay_state) == 0
    assert engine.searches == []


async def test_explicit_threshold(replenisher, autoplay_state, engine):
    engine.default_results = [make_track("Eagles - Hotel California"), make_track("Adele - Rolling in the Deep")]

    assert await replenisher.replenish(autoplay_state, queue_depth_threshold=1) == 1
    assert await replenisher.replenish(autoplay_state, queue_depth_threshold=1) == 0


async def test_replenish_disabled(replenisher, state, engine, seed):
    state.current_track = seed
    engine.default_results = [make_track("Eagles - Hotel California")]

    assert await replenisher.replenish(state) == 0
    assert engine.searches == []


async def test_replenish_without_seed(replenisher, state, engine):
    state.autoplay_enabled = True
    assert await replenisher.replenish(state) == 0
    assert engine.searches == []


async def test_search_failure_returns_zero(replenisher, autoplay_state, engine):
    engine.search_error = RuntimeError("lavalink timed out")

    assert await replenisher.replenish(autoplay_state) == 0
    assert autoplay_state.queue == []


async def test_no_usable_results(replenisher, autoplay_state, engine):
    engine.default_results = [make_track("Africa - Toto")]
    assert await replenisher.replenish(autoplay_state) == 0
    assert autoplay_state.autoplay_count == 0


async def test_state_destroyed_during_search(replenisher, registry, autoplay_state, engine):
    engine.default_results = [make_track("Eagles - Hotel California")]
    engine.search_gate = asyncio.Event()

    task = asyncio.create_task(replenisher.replenish(autoplay_state))
    while not engine.searches:
        await asyncio.sleep(0)
    registry.destroy(GUILD_ID)
    engine.search_gate.set()

    assert await task == 0
    assert autoplay_state.queue == []
