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

"""Immutable playback settings handed to the core at construction time.

Built from settings.yaml by ConfigManager.playback_settings(); tests build
them directly.
"""

from dataclasses import dataclass, field

from core.engine import SearchMode
from core.similarity import SimilarityThresholds


@dataclass(frozen=True, slots=True)
class PlaybackSettings:
    """
    Attributes:
        history_size: Finished tracks kept per guild (oldest evicted)
        max_autoplay_tracks: Consecutive autoplay tracks allowed before a human must queue something
        default_volume: Volume applied to new guild states (1-100)
        autoplay_enabled: Initial autoplay toggle for new guild states
        autoplay_queue_size: Queue depth autoplay tops up to
        autoplay_near_limit_queue_size: Smaller depth used once the counter nears the cap
        autoplay_near_limit_ratio: Fraction of the cap at which the smaller depth applies
        autoplay_min_duration: Shortest autoplay candidate in seconds (0 = no limit)
        autoplay_max_duration: Longest autoplay candidate in seconds (0 = no limit)
        search_mode: Search used for /play queries
        autoplay_search_mode: Search used for related-track queries
        recovery_search_mode: Alternate search used to substitute broken streams
        recovery_backoff_seconds: Wait between pausing and resuming a stalled stream
        skip_on_parser_error: Skip tracks the backend fails to parse instead of logging only
        similarity: Title comparison thresholds
    """

    history_size: int = 50
    max_autoplay_tracks: int = 50
    default_volume: int = 50
    autoplay_enabled: bool = True
    autoplay_queue_size: int = 8
    autoplay_near_limit_queue_size: int = 3
    autoplay_near_limit_ratio: float = 0.8
    autoplay_min_duration: int = 30
    autoplay_max_duration: int = 900
    search_mode: SearchMode = SearchMode.YOUTUBE_MUSIC
    autoplay_search_mode: SearchMode = SearchMode.YOUTUBE
    recovery_search_mode: SearchMode = SearchMode.YOUTUBE
    recovery_backoff_seconds: float = 5.0
    skip_on_parser_error: bool = True
    similarity: SimilarityThresholds = field(default_factory=SimilarityThresholds)
