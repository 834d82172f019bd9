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

"""Title comparison used to decide whether two uploads are the same song.

Urls are useless for this: the same song lives under dozens of uploads with
different decorations ("(Official Video)", "[Lyrics]", "Artist - Title" vs
"Title by Artist"). Titles are stripped of that noise, split into
(artist, title) where a known convention matches, and compared with a
normalized Levenshtein score from RapidFuzz.
"""

import re
import unicodedata
from dataclasses import dataclass
from functools import lru_cache

from rapidfuzz.distance import Levenshtein


@dataclass(frozen=True, slots=True)
class SimilarityThresholds:
    """Tunables for TitleSimilarity (settings.yaml ``similarity`` section)."""

    title_threshold: float = 0.8
    title_threshold_with_artist: float = 0.6
    artist_threshold: float = 0.8
    title_factor: float = 0.8
    min_substring_length: int = 10
    match_same_artist: bool = True


# Platform decoration, removed before artist/title extraction.
# Parenthesised groups only go when they contain a known decoration word so
# "(Don't Fear) The Reaper" survives while "(Official Music Video)" does not.
_DECORATION_WORDS = (
    r"official|lyrics?|lyric|audio|video|visuali[sz]er|hd|hq|4k|mv|m/v|"
    r"remaster(?:ed)?|explicit|clean|teaser|trailer|clip|live|acoustic|"
    r"radio\s+edit|extended|version|feat\.?|ft\.?|featuring|prod\.?"
)
_BRACKET_TAG = re.compile(r"\[[^\]]*\]|【[^】]*】")
_DECORATED_PARENS = re.compile(
    rf"\((?=[^)]*\b(?:{_DECORATION_WORDS})(?!\w))[^)]*\)", re.IGNORECASE
)

# Featuring/producer credits inside an artist or title part
_CREDITS = re.compile(r"\b(?:feat|ft|featuring|prod|produced\s+by)\b\.?.*$", re.IGNORECASE)
_NON_WORD = re.compile(r"[\W_]+")

# Order matters: first match wins.
_ARTIST_TITLE_PATTERNS = (
    re.compile(r"^(?P<artist>.+?)(?:\s+-\s+|\s*[–—]\s*)(?P<title>.+)$"),
    re.compile(r"^(?P<artist>.+?)\s+\|\s+(?P<title>.+)$"),
    re.compile(r"^(?P<artist>[^:]+?)\s*:\s+(?P<title>.+)$"),
    re.compile(r"^(?P<title>.+?)\s+by\s+(?P<artist>.+)$", re.IGNORECASE),
)


def strip_decoration(title: str) -> str:
    """Remove bracketed tags and decorated parentheses, collapse whitespace."""
    stripped = _BRACKET_TAG.sub(" ", title)
    stripped = _DECORATED_PARENS.sub(" ", stripped)
    stripped = " ".join(stripped.split())
    return stripped or " ".join(title.split())


def normalize(text: str) -> str:
    """Lowercase, drop credits and diacritics, turn punctuation into single spaces."""
    if not text:
        return ""
    text = _CREDITS.sub("", text)
    text = unicodedata.normalize("NFKD", text)
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = _NON_WORD.sub(" ", text.lower())
    return " ".join(text.split())


@lru_cache(maxsize=2000)
def split_artist_title(title: str) -> tuple[str, str]:
    """Split a raw upload title into normalized ``(artist, title)``.

    Artist is empty when no convention matched.
    """
    cleaned = strip_decoration(title)
    for pattern in _ARTIST_TITLE_PATTERNS:
        match = pattern.match(cleaned)
        if match:
            artist = normalize(match.group("artist"))
            song = normalize(match.group("title"))
            if artist and song:
                return artist, song
    return "", normalize(cleaned)


class TitleSimilarity:
    """Decides whether two titles name the same song.

    Args:
        thresholds: Score thresholds, defaults match settings.yaml defaults
    """

    def __init__(self, thresholds: SimilarityThresholds | None = None) -> None:
        self.thresholds = thresholds or SimilarityThresholds()

    def is_similar(self, title_a: str | None, title_b: str | None) -> bool:
        """Return True when both titles most likely refer to the same song.

        Empty, missing or non-string input is never similar to anything.
        """
        if not isinstance(title_a, str) or not isinstance(title_b, str):
            return False
        if not title_a.strip() or not title_b.strip():
            return False
        if title_a == title_b:
            return True

        artist_a, song_a = split_artist_title(title_a)
        artist_b, song_b = split_artist_title(title_b)
        has_artists = bool(artist_a and artist_b)
        t = self.thresholds

        if has_artists and t.match_same_artist and artist_a == artist_b:
            return True
        if not song_a or not song_b:
            return False
        if song_a == song_b:
            return True

        # "Title - Artist" uploads of an "Artist - Title" song
        if has_artists and song_a == artist_b and artist_a == song_b:
            return True

        if min(len(song_a), len(song_b)) > t.min_substring_length:
            if song_a in song_b or song_b in song_a:
                return True

        title_score = Levenshtein.normalized_similarity(song_a, song_b)
        artist_score = Levenshtein.normalized_similarity(artist_a, artist_b) if has_artists else 0.0
        title_threshold = t.title_threshold_with_artist if has_artists else t.title_threshold

        return title_score > title_threshold or (
            artist_score > t.artist_threshold
            and title_score > title_threshold * t.title_factor
        )

    def matches_any(self, title: str, others) -> bool:
        """True if ``title`` is similar to any title in ``others``."""
        return any(self.is_similar(title, other) for other in others)
