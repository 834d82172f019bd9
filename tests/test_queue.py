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

from conftest import make_track
from core.duplicates import DuplicateFilter
from core.queue import QueueOrderingPolicy
from core.track import TrackSource


def titles(state):
    return [track.title for track in state.queue]


def test_manual_insert_into_empty_queue(policy, state):
    result = policy.insert(state, [make_track("Queen - Bohemian Rhapsody")], manual=True)

    assert result.count == 1
    assert result.position == 0
    assert titles(state) == ["Queen - Bohemian Rhapsody"]
    assert state.queue[0].source is TrackSource.MANUAL
    assert state.autoplay_count == 0


def test_autoplay_appends_and_counts(policy, state):
    policy.insert(state, [make_track("Queen - Bohemian Rhapsody")], manual=True)
    result = policy.insert(state, [make_track("Toto - Africa")], manual=False)

    assert result.position == 1
    assert titles(state) == ["Queen - Bohemian Rhapsody", "Toto - Africa"]
    assert state.queue[1].is_autoplay
    assert state.autoplay_count == 1


def test_manual_goes_before_autoplay_and_resets_counter(policy, state):
    policy.insert(state, [make_track("Queen - Bohemian Rhapsody")], manual=True)
    policy.insert(state, [make_track("Toto - Africa")], manual=False)
    result = policy.insert(state, [make_track("Eagles - Hotel California")], manual=True)

    assert result.position == 1
    assert titles(state) == ["Queen - Bohemian Rhapsody", "Eagles - Hotel California", "Toto - Africa"]
    assert state.autoplay_count == 0


def test_manual_batch_stays_ahead_of_later_autoplay(policy, state):
    manual = [make_track("Queen - Bohemian Rhapsody"), make_track("Eagles - Hotel California")]
    autoplay = [make_track("Toto - Africa"), make_track("Adele - Rolling in the Deep")]
    policy.insert(state, autoplay[:1], manual=False)
    policy.insert(state, manual, manual=True)
    policy.insert(state, autoplay[1:], manual=False)

    sources = [track.source for track in state.queue]
    last_manual = max(i for i, s in enumerate(sources) if s is TrackSource.MANUAL)
    first_autoplay = min(i for i, s in enumerate(sources) if s is TrackSource.AUTOPLAY)
    assert last_manual < first_autoplay


def test_play_immediately_goes_to_front(policy, state):
    policy.insert(state, [make_track("Queen - Bohemian Rhapsody")], manual=True)
    policy.insert(state, [make_track("Toto - Africa")], manual=False)
    result = policy.insert(state, [make_track("Eagles - Hotel California")], manual=True, play_immediately=True)

    assert result.position == 0
    assert titles(state)[0] == "Eagles - Hotel California"
    assert state.autoplay_count == 0


def test_duplicate_batch_is_a_noop(policy, state):
    policy.insert(state, [make_track("Artist - Song Title (Official Video)")], manual=True)
    before = list(state.queue)

    result = policy.insert(state, [make_track("Song Title - Artist [Lyrics]")], manual=True)

    assert not result
    assert result.count == 0
    assert result.dropped == 1
    assert result.position is None
    assert state.queue == before


def test_duplicates_of_history_and_current_are_dropped(policy, state):
    state.current_track = make_track("Toto - Africa")
    state.history.appendleft(make_track("Eagles - Hotel California"))

    result = policy.insert(
        state,
        [make_track("Africa - Toto"), make_track("Eagles - Hotel California (Live)"), make_track("Queen - Bohemian Rhapsody")],
        manual=True,
    )

    assert result.count == 1
    assert titles(state) == ["Queen - Bohemian Rhapsody"]


def test_rejected_autoplay_batch_does_not_count(policy, state):
    state.current_track = make_track("Toto - Africa")
    policy.insert(state, [make_track("Toto - Africa [HD]")], manual=False)
    assert state.autoplay_count == 0


def test_autoplay_count_is_clamped(duplicates, state):
    policy = QueueOrderingPolicy(duplicates, max_autoplay_tracks=2)
    batch = [make_track("Queen - Bohemian Rhapsody"), make_track("Toto - Africa"), make_track("Eagles - Hotel California")]
    policy.insert(state, batch, manual=False)
    assert len(state.queue) == 3
    assert state.autoplay_count == 2


def test_first_autoplay_index(policy, state):
    assert policy.first_autoplay_index(state) == 0
    policy.insert(state, [make_track("Queen - Bohemian Rhapsody")], manual=True)
    assert policy.first_autoplay_index(state) == 1
    policy.insert(state, [make_track("Toto - Africa")], manual=False)
    assert policy.first_autoplay_index(state) == 1


def test_requeue_skips_dedup(state):
    track = make_track("Toto - Africa")
    state.history.appendleft(track)
    QueueOrderingPolicy.requeue(state, track, front=True)
    QueueOrderingPolicy.requeue(state, make_track("Queen - Bohemian Rhapsody"), front=True)
    QueueOrderingPolicy.requeue(state, make_track("Eagles - Hotel California"), front=False)
    assert titles(state) == ["Queen - Bohemian Rhapsody", "Toto - Africa", "Eagles - Hotel California"]


def test_pop_remove_and_clear(policy, state):
    policy.insert(
        state,
        [make_track("Queen - Bohemian Rhapsody"), make_track("Toto - Africa"), make_track("Eagles - Hotel California")],
        manual=True,
    )

    assert policy.remove(state, 5) is None
    assert policy.remove(state, -1) is None
    assert policy.remove(state, 1).title == "Toto - Africa"
    assert policy.pop_next(state).title == "Queen - Bohemian Rhapsody"
    assert policy.clear(state) == 1
    assert policy.pop_next(state) is None


def test_duplicate_filter_does_not_mutate_state(state):
    state.current_track = make_track("Toto - Africa")
    state.queue.append(make_track("Queen - Bohemian Rhapsody"))
    snapshot = (state.current_track, list(state.queue), list(state.history))

    DuplicateFilter().filter_duplicates([make_track("Africa - Toto")], state)

    assert (state.current_track, list(state.queue), list(state.history)) == snapshot


def test_duplicate_filter_dedups_within_batch(state):
    batch = [
        make_track("Queen - Bohemian Rhapsody"),
        make_track("Queen - Bohemian Rhapsody (Official Video)"),
        make_track("Toto - Africa"),
    ]
    kept = DuplicateFilter().filter_duplicates(batch, state)
    assert [t.title for t in kept] == ["Queen - Bohemian Rhapsody", "Toto - Africa"]


def test_requeue_at_back_stays_ahead_of_autoplay(policy, state):
    policy.insert(state, [make_track("Queen - Bohemian Rhapsody")], manual=True)
    policy.insert(state, [make_track("Toto - Africa")], manual=False)

    QueueOrderingPolicy.requeue(state, make_track("Eagles - Hotel California"), front=False)
    QueueOrderingPolicy.requeue(state, make_track("Adele - Hello", source=TrackSource.AUTOPLAY), front=False)

    assert titles(state) == ["Queen - Bohemian Rhapsody", "Eagles - Hotel California", "Toto - Africa", "Adele - Hello"]


def fill_mixed(policy, state):
    policy.insert(
        state,
        [make_track("Queen - Bohemian Rhapsody"), make_track("Eagles - Hotel California"), make_track("Adele - Hello")],
        manual=True,
    )
    policy.insert(
        state,
        [make_track("Toto - Africa"), make_track("Nirvana - Come As You Are"), make_track("Oasis - Wonderwall")],
        manual=False,
    )


def manual_before_autoplay(state):
    sources = [track.source for track in state.queue]
    return sources == sorted(sources, key=lambda s: s is TrackSource.AUTOPLAY)


def test_move_within_manual_block(policy, state):
    fill_mixed(policy, state)

    moved = policy.move(state, 2, 0)

    assert moved.title == "Adele - Hello"
    assert moved.source is TrackSource.MANUAL
    assert titles(state)[:3] == ["Adele - Hello", "Queen - Bohemian Rhapsody", "Eagles - Hotel California"]


def test_move_autoplay_forward_becomes_manual(policy, state):
    fill_mixed(policy, state)

    moved = policy.move(state, 5, 1)

    assert moved.title == "Oasis - Wonderwall"
    assert moved.source is TrackSource.MANUAL
    assert manual_before_autoplay(state)


def test_move_manual_into_autoplay_block_becomes_autoplay(policy, state):
    fill_mixed(policy, state)

    moved = policy.move(state, 0, 4)

    assert moved.is_autoplay
    assert titles(state)[4] == "Queen - Bohemian Rhapsody"
    assert manual_before_autoplay(state)


def test_move_to_end_of_manual_block_stays_manual(policy, state):
    fill_mixed(policy, state)
    moved = policy.move(state, 0, 2)
    assert moved.source is TrackSource.MANUAL
    assert titles(state)[2] == "Queen - Bohemian Rhapsody"


def test_move_out_of_range(policy, state):
    fill_mixed(policy, state)
    before = list(state.queue)

    assert policy.move(state, 6, 0) is None
    assert policy.move(state, -1, 0) is None
    assert state.queue == before
    assert policy.move(state, 0, 99).title == "Queen - Bohemian Rhapsody"
    assert state.queue[-1].title == "Queen - Bohemian Rhapsody"


def test_shuffle_keeps_blocks_apart(policy, state):
    fill_mixed(policy, state)
    manual = set(titles(state)[:3])
    autoplay = set(titles(state)[3:])

    for _ in range(20):
        assert policy.shuffle(state) == 6
        assert set(titles(state)[:3]) == manual
        assert set(titles(state)[3:]) == autoplay
        assert manual_before_autoplay(state)


def test_shuffle_empty_queue(policy, state):
    assert policy.shuffle(state) == 0
    assert state.queue == []
