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

"""Fuzzy search over a guild's queue using RapidFuzz.

Backs the /remove autocomplete: the user types part of a title or artist and
gets queue positions back.

- WRatio on "author - title" handles most partial matches
- token_set_ratio on "author title" ignores word order
- partial_ratio on the title catches short substrings ("drum" -> "Drum Show")
"""

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from core.track import TrackRecord

AUTOCOMPLETE_MIN_SCORE = 61


def fuzzy_search_queue(
    query: str, queue: list[TrackRecord], max_results: int = 25
) -> list[tuple[int, TrackRecord, float]]:
    """
    Score every queued track against ``query``.

    Args:
        query: Search string (truncated to 100 chars)
        queue: Guild queue in play order
        max_results: Maximum results to return

    Returns:
        (index, track, score) tuples, best first, ties broken by queue order.
        Exact title matches score 101.
    """
    if not query or not queue:
        return []

    query = query[:100]
    query_processed = default_process(query)
    if not query_processed:
        return []

    results = []
    for index, track in enumerate(queue):
        author_title = f"{track.author} - {track.title}" if track.author else track.title
        combined = f"{track.author} {track.title}" if track.author else track.title

        score_wratio = fuzz.WRatio(query, author_title, processor=default_process)

        # Short queries shouldn't get 100 on long targets
        score_token_raw = fuzz.token_set_ratio(query, combined, processor=default_process)
        length_ratio = min(len(query_processed) / max(len(default_process(combined)), 1), 1.0)
        score_token = score_token_raw * (0.7 + 0.3 * length_ratio)

        score_partial = fuzz.partial_ratio(query, track.title, processor=default_process)
        title_len = len(default_process(track.title))
        if len(query_processed) > title_len:
            score_partial *= 0.5 + 0.5 * (title_len / len(query_processed))

        score = max(score_wratio, score_token, score_partial)
        if default_process(track.title) == query_processed:
            score += 1

        results.append((index, track, score))

    results.sort(key=lambda r: (-r[2], r[0]))
    return results[:max_results]


def autocomplete_queue(
    query: str, queue: list[TrackRecord], max_results: int = 25
) -> list[tuple[int, TrackRecord, float]]:
    """Autocomplete results: without a query the head of the queue, otherwise 61%+ matches."""
    if not query:
        return [(i, track, 0.0) for i, track in enumerate(queue[:max_results])]
    results = fuzzy_search_queue(query, queue, max_results=max_results)
    return [r for r in results if r[2] >= AUTOCOMPLETE_MIN_SCORE]
