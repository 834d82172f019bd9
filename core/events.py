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

"""Playback events emitted by the audio engine, consumed by PlaybackRecoveryController.dispatch()."""

from dataclasses import dataclass
from typing import Union

from core.track import TrackRecord


@dataclass(frozen=True, slots=True)
class TrackStarted:
    guild_id: int
    track: TrackRecord


@dataclass(frozen=True, slots=True)
class TrackFinished:
    """Track played to the end. ``track`` is the record the engine was playing, if known."""

    guild_id: int
    track: TrackRecord | None = None


@dataclass(frozen=True, slots=True)
class TrackSkipped:
    """Track stopped early. ``failed`` marks an end caused by a load or stream failure."""

    guild_id: int
    track: TrackRecord | None = None
    failed: bool = False


@dataclass(frozen=True, slots=True)
class VoiceConnectionError:
    """Voice/node level failure (socket reset, refused, timed out)."""

    guild_id: int
    message: str


@dataclass(frozen=True, slots=True)
class PlaybackError:
    """Failure while loading or streaming the current track."""

    guild_id: int
    message: str
    track: TrackRecord | None = None


PlaybackEvent = Union[TrackStarted, TrackFinished, TrackSkipped, VoiceConnectionError, PlaybackError]
