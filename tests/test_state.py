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
from core.settings import PlaybackSettings
from core.state import GuildPlaybackState, GuildStateMissing, GuildStateRegistry
from core.track import TrackSource, format_duration


def test_get_or_create_returns_same_state(registry):
    state = registry.get_or_create(GUILD_ID)
    assert registry.get_or_create(GUILD_ID) is state
    assert GUILD_ID in registry
    assert len(registry) == 1


def test_new_state_uses_configured_defaults():
    registry = GuildStateRegistry(PlaybackSettings(default_volume=70, history_size=5, autoplay_enabled=False))
    state = registry.get_or_create(GUILD_ID)
    assert state.volume == 70
    assert state.history.maxlen == 5
    assert state.autoplay_enabled is False
    assert state.autoplay_count == 0
    assert state.is_idle


def test_guilds_are_independent(registry):
    a = registry.get_or_create(1)
    b = registry.get_or_create(2)
    a.queue.append(make_track("Toto - Africa"))
    assert b.queue == []
    assert a.generation != b.generation


def test_record_now_playing_leaves_history_alone(registry, state):
    track = make_track("Toto - Africa")
    registry.record_now_playing(GUILD_ID, track)
    assert state.current_track is track
    assert len(state.history) == 0


def test_record_finished_moves_current_to_history_front(registry, state):
    first = make_track("Toto - Africa")
    second = make_track("Eagles - Hotel California")
    registry.record_now_playing(GUILD_ID, first)
    registry.record_finished(GUILD_ID)
    registry.record_now_playing(GUILD_ID, second)

    assert registry.record_finished(GUILD_ID) is second
    assert state.current_track is None
    assert list(state.history) == [second, first]
    assert state.last_played is second


def test_record_finished_with_nothing_current(registry, state):
    assert registry.record_finished(GUILD_ID) is None
    assert len(state.history) == 0


def test_history_is_capped_oldest_evicted():
    registry = GuildStateRegistry(PlaybackSettings(history_size=3))
    state = registry.get_or_create(GUILD_ID)
    tracks = [make_track(f"Track number {i}") for i in range(5)]
    for track in tracks:
        registry.record_now_playing(GUILD_ID, track)
        registry.record_finished(GUILD_ID)

    assert list(state.history) == [tracks[4], tracks[3], tracks[2]]


def test_operations_on_unknown_guild_raise(registry):
    with pytest.raises(GuildStateMissing):
        registry.require(GUILD_ID)
    with pytest.raises(GuildStateMissing):
        registry.record_now_playing(GUILD_ID, make_track("Toto - Africa"))
    with pytest.raises(GuildStateMissing):
        registry.record_finished(GUILD_ID)
    assert registry.get(GUILD_ID) is None


def test_destroy_drops_state(registry, state):
    generation = state.generation
    assert registry.destroy(GUILD_ID) is True
    assert GUILD_ID not in registry
    assert state.destroyed
    assert not state.is_alive(generation)
    assert registry.destroy(GUILD_ID) is False


def test_recreated_state_gets_new_generation(registry, state):
    old_generation = state.generation
    registry.destroy(GUILD_ID)
    fresh = registry.get_or_create(GUILD_ID)
    assert fresh is not state
    assert fresh.generation != old_generation
    assert fresh.queue == []


async def test_destroy_cancels_pending_tasks(registry, state):
    task = state.track_task(asyncio.create_task(asyncio.sleep(60)))
    registry.destroy(GUILD_ID)
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not state.pending_tasks


async def test_finished_tasks_are_forgotten(state):
    task = state.track_task(asyncio.create_task(asyncio.sleep(0)))
    await task
    await asyncio.sleep(0)
    assert task not in state.pending_tasks


def test_clear_destroys_everything(registry):
    states = [registry.get_or_create(guild_id) for guild_id in (1, 2, 3)]
    registry.clear()
    assert len(registry) == 0
    assert all(s.destroyed for s in states)


class TestVolume:
    def test_set_volume(self, state):
        state.set_volume(80)
        assert state.volume == 80

    @pytest.mark.parametrize("level", [0, 101, -5])
    def test_out_of_range_rejected(self, state, level):
        with pytest.raises(ValueError):
            state.set_volume(level)

    def test_constructor_clamps(self):
        assert GuildPlaybackState(GUILD_ID, volume=500).volume == 100
        assert GuildPlaybackState(GUILD_ID, volume=0).volume == 1


def test_is_current_compares_urls(state):
    track = make_track("Toto - Africa", url="https://youtu.be/africa")
    state.current_track = track
    assert state.is_current(make_track("Africa (Live)", url="https://youtu.be/africa"))
    assert not state.is_current(make_track("Toto - Africa"))
    assert not state.is_current(None)


def test_seed_track_prefers_current(state):
    last = make_track("Toto - Africa")
    now = make_track("Eagles - Hotel California")
    assert state.seed_track is None
    state.last_played = last
    assert state.seed_track is last
    state.current_track = now
    assert state.seed_track is now


class TestTrackRecord:
    def test_with_source(self):
        track = make_track("Toto - Africa")
        tagged = track.with_source(TrackSource.AUTOPLAY)
        assert tagged.is_autoplay
        assert not track.is_autoplay
        assert track.with_source(TrackSource.MANUAL) is track

    def test_substitute_keeps_request_info(self):
        failed = make_track("Toto - Africa", requester_id="7", source=TrackSource.AUTOPLAY)
        found = make_track("Toto - Africa (Audio)", requester_id="")
        replacement = failed.substitute(found)
        assert replacement.url == found.url
        assert replacement.requester_id == "7"
        assert replacement.requested_at == failed.requested_at
        assert replacement.source is TrackSource.AUTOPLAY

    def test_display_name(self):
        assert make_track("Africa", author="Toto").display_name == "Toto - Africa"
        assert make_track("Toto - Africa", author="Toto").display_name == "Toto - Africa"

    @pytest.mark.parametrize("seconds, expected", [(0, "0:00"), (75, "1:15"), (3725, "1:02:05"), (-1, "0:00")])
    def test_format_duration(self, seconds, expected):
        assert format_duration(seconds) == expected
