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
Autoplay

Keeps the queue topped up with related tracks once people stop adding
their own. Runs after every finished or skipped track.

Related tracks come from a plain search built out of the seed track's
artist plus up to two genre words found in its title or uploader name.
Without a usable artist the first few meaningful title words are used
instead.
"""

import re
from dataclasses import replace

from loguru import logger

from core.duplicates import DuplicateFilter
from core.engine import SearchOptions, SearchProvider
from core.queue import QueueOrderingPolicy
from core.settings import PlaybackSettings
from core.similarity import split_artist_title, strip_decoration
from core.state import GuildPlaybackState
from core.track import TrackRecord


GENRE_KEYWORDS = (
    "rock", "pop", "jazz", "blues", "country", "folk", "rap", "hip hop",
    "metal", "classical", "electronic", "dance", "reggae", "funk", "soul",
    "r&b", "indie", "alternative", "punk", "grunge", "disco", "techno",
    "house", "trance", "ambient", "acoustic", "instrumental", "vocal",
)
_GENRE_PATTERNS = tuple(
    (genre, re.compile(rf"(?<!\w){re.escape(genre)}(?!\w)")) for genre in GENRE_KEYWORDS
)

# Uploader names like "ArtistVEVO" or "Artist - Topic"
_CHANNEL_NOISE = re.compile(r"(?:\s*-\s*topic|vevo|\s+official)$", re.IGNORECASE)

# Re-edits nobody wants autoplayed
_UNWANTED_VARIANTS = re.compile(
    r"\b(?:karaoke|nightcore|8d audio|sped up|slowed|reverb|\d+\s*hours?)\b", re.IGNORECASE
)

_WORDS = re.compile(r"[^\w\s]+")


def extract_tags(track: TrackRecord) -> list[str]:
    """Genre keywords mentioned in the track's title or uploader, in keyword order."""
    text = f"{track.title} {track.author}".lower()
    return [genre for genre, pattern in _GENRE_PATTERNS if pattern.search(text)]


def seed_artist(track: TrackRecord) -> str:
    """Best guess at the seed's artist: cleaned uploader name, else the artist part of the title."""
    author = _CHANNEL_NOISE.sub("", track.author or "").strip()
    if author:
        return author
    artist, _ = split_artist_title(track.title)
    return artist


def build_related_query(track: TrackRecord) -> str:
    """Search query for tracks related to ``track``. Empty when nothing usable was found."""
    artist = seed_artist(track)
    if artist:
        return " ".join([artist, *extract_tags(track)[:2]])

    words = [w for w in _WORDS.sub(" ", strip_decoration(track.title).lower()).split() if len(w) > 3]
    author_first = track.author.split()[0] if track.author.split() else ""
    return " ".join(filter(None, [*words[:3], author_first]))


class AutoplayReplenisher:
    """Appends related tracks when a guild's queue runs low.

    Args:
        search: Backend used for related-track queries
        policy: Queue policy the results are inserted through (as autoplay)
        duplicates: Filter applied to search results before slicing
        settings: Queue depth, cap and duration limits
        requester_id: Id stamped on autoplay tracks (the bot's own user id)
    """

    def __init__(
        self,
        search: SearchProvider,
        policy: QueueOrderingPolicy,
        duplicates: DuplicateFilter,
        settings: PlaybackSettings | None = None,
        requester_id: str = "",
    ) -> None:
        self.search = search
        self.policy = policy
        self.duplicates = duplicates
        self.settings = settings or PlaybackSettings()
        self.requester_id = requester_id

    def target_queue_size(self, state: GuildPlaybackState) -> int:
        """Queue depth to top up to. Shrinks once the counter nears the cap."""
        s = self.settings
        if state.autoplay_count >= s.max_autoplay_tracks * s.autoplay_near_limit_ratio:
            return s.autoplay_near_limit_queue_size
        return s.autoplay_queue_size

    def _duration_ok(self, track: TrackRecord) -> bool:
        seconds = track.duration_seconds
        if not seconds:
            return True
        s = self.settings
        if s.autoplay_min_duration and seconds < s.autoplay_min_duration:
            return False
        if s.autoplay_max_duration and seconds > s.autoplay_max_duration:
            return False
        return True

    async def replenish(self, state: GuildPlaybackState, queue_depth_threshold: int | None = None) -> int:
        """Top up ``state.queue`` with related tracks. Returns how many were added.

        Never raises for search failures or empty results; the queue just
        stays short until the next finished track.
        """
        if not state.autoplay_enabled or state.destroyed:
            return 0

        max_tracks = self.settings.max_autoplay_tracks
        threshold = queue_depth_threshold if queue_depth_threshold is not None else self.target_queue_size(state)
        if len(state.queue) >= threshold or state.autoplay_count >= max_tracks:
            return 0

        seed = state.seed_track
        if seed is None:
            return 0
        query = build_related_query(seed)
        if not query:
            logger.debug(f"guild {state.guild_id}: no autoplay query for {seed.title!r}")
            return 0

        generation = state.generation
        options = SearchOptions(
            mode=self.settings.autoplay_search_mode,
            requester_id=self.requester_id,
            guild_id=state.guild_id,
        )
        try:
            result = await self.search.search(query, options)
        except Exception:
            logger.opt(exception=True).warning(f"guild {state.guild_id}: autoplay search failed for {query!r}")
            return 0

        # Guild may have left or refilled the queue while we were searching
        if not state.is_alive(generation):
            logger.debug(f"guild {state.guild_id}: state gone during autoplay search")
            return 0
        open_slots = min(threshold - len(state.queue), max_tracks - state.autoplay_count)
        if open_slots <= 0:
            return 0

        candidates = [
            track for track in result.tracks
            if track.url != seed.url
            and self._duration_ok(track)
            and not _UNWANTED_VARIANTS.search(track.title)
        ]
        fresh = self.duplicates.filter_duplicates(candidates, state)[:open_slots]
        if not fresh:
            logger.debug(f"guild {state.guild_id}: autoplay found nothing usable for {query!r}")
            return 0

        if self.requester_id:
            fresh = [replace(track, requester_id=self.requester_id) for track in fresh]
        inserted = self.policy.insert(state, fresh, manual=False)
        if inserted:
            logger.info(
                f"guild {state.guild_id}: autoplay added {inserted.count} track(s) "
                f"({state.autoplay_count}/{max_tracks})"
            )
        return inserted.count
