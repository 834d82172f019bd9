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
Lavalink Engine

AudioEngine implementation on top of mafic. Owns the mapping between
mafic players/tracks and TrackRecords, and turns mafic events into
PlaybackEvents for the recovery controller.

The Music cog receives the raw mafic events (bot listeners) and passes
them through the translate_* helpers here before dispatching.
"""

import asyncio
from typing import Awaitable, Callable

import aiohttp
import discord
import mafic
from discord.ext import commands
from loguru import logger

from core.engine import SearchMode, SearchOptions, SearchResult
from core.events import (
    PlaybackError,
    PlaybackEvent,
    TrackFinished,
    TrackSkipped,
    TrackStarted,
    VoiceConnectionError,
)
from core.track import TrackRecord

# Normal closes: we left, or got kicked/moved by Discord
IGNORED_CLOSE_CODES = frozenset({1000, 4014})


class TrackLoadFailed(LookupError):
    """Lavalink returned nothing playable for a track url."""


def to_record(track: mafic.Track, requester_id: str = "") -> TrackRecord:
    """Convert a mafic Track into a TrackRecord. Streams get duration 0."""
    return TrackRecord(
        url=track.uri or "",
        title=track.title or "unknown",
        author=track.author or "",
        thumbnail=getattr(track, "artwork_url", None),
        duration_seconds=0 if track.stream else track.length // 1000,
        requester_id=requester_id,
    )


class LavalinkEngine:
    """mafic-backed AudioEngine.

    Args:
        bot: Bot owning the mafic NodePool (``bot.pool``)
        on_event: Coroutine called with connection errors raised while
            starting a track (usually PlaybackRecoveryController.dispatch)
    """

    def __init__(
        self,
        bot: commands.Bot,
        on_event: Callable[[PlaybackEvent], Awaitable[None]] | None = None,
    ) -> None:
        self.bot = bot
        self.on_event = on_event
        self._playing: dict[int, TrackRecord] = {}
        self._channels: dict[int, int] = {}
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # Players
    # =========================================================================

    def get_player(self, guild_id: int | None) -> mafic.Player | None:
        if guild_id is None:
            return None
        guild = self.bot.get_guild(guild_id)
        if guild and guild.voice_client and isinstance(guild.voice_client, mafic.Player):
            return guild.voice_client
        return None

    def _require_player(self, guild_id: int) -> mafic.Player:
        player = self.get_player(guild_id)
        if player is None:
            raise RuntimeError(f"no voice player for guild {guild_id}")
        return player

    def now_playing(self, guild_id: int) -> TrackRecord | None:
        """Record last handed to the player for this guild."""
        return self._playing.get(guild_id)

    def _emit(self, event: PlaybackEvent) -> None:
        if self.on_event is None:
            return
        task = asyncio.create_task(self.on_event(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # =========================================================================
    # SearchProvider
    # =========================================================================

    async def search(self, query: str, options: SearchOptions) -> SearchResult:
        player = self.get_player(options.guild_id)
        if player is None:
            logger.warning(f"guild {options.guild_id}: search without a voice player, skipping {query!r}")
            return SearchResult()

        if options.mode is SearchMode.URL:
            result = await player.fetch_tracks(query)
        else:
            result = await player.fetch_tracks(query, search_type=options.mode.value)

        if not result:
            return SearchResult()
        tracks = result.tracks if isinstance(result, mafic.Playlist) else result
        return SearchResult(tuple(
            to_record(track, options.requester_id) for track in tracks[:options.limit] if track.uri
        ))

    # =========================================================================
    # AudioEngine
    # =========================================================================

    async def connect(self, guild_id: int, channel_id: int) -> None:
        guild = self.bot.get_guild(guild_id)
        channel = guild.get_channel(channel_id) if guild else None
        if not isinstance(channel, discord.VoiceChannel | discord.StageChannel):
            raise RuntimeError(f"guild {guild_id}: voice channel {channel_id} not found")
        if self.get_player(guild_id) is None:
            await channel.connect(cls=mafic.Player, self_deaf=True)
        self._channels[guild_id] = channel_id

    async def disconnect(self, guild_id: int) -> None:
        self._playing.pop(guild_id, None)
        self._channels.pop(guild_id, None)
        player = self.get_player(guild_id)
        if player is not None:
            await player.disconnect(force=True)

    async def rejoin(self, guild_id: int) -> bool:
        channel_id = self._channels.get(guild_id)
        if channel_id is None:
            logger.warning(f"guild {guild_id}: no remembered voice channel to rejoin")
            return False

        player = self.get_player(guild_id)
        had_track = player is not None and player.current is not None
        if player is not None:
            await player.disconnect(force=True)
        await self.connect(guild_id, channel_id)

        player = self.get_player(guild_id)
        if player is None or not player.connected:
            return False
        record = self._playing.get(guild_id)
        if had_track and record is not None:
            await self.play(guild_id, record)
        return True

    def is_connected(self, guild_id: int) -> bool:
        player = self.get_player(guild_id)
        return player is not None and player.connected

    def is_playing(self, guild_id: int) -> bool:
        player = self.get_player(guild_id)
        return player is not None and player.current is not None and not player.paused

    async def play(self, guild_id: int, track: TrackRecord) -> None:
        player = self._require_player(guild_id)
        try:
            tracks = await player.fetch_tracks(track.url)
        except aiohttp.ClientConnectionError as e:
            logger.error(f"guild {guild_id}: lavalink unreachable while loading {track.title!r}: {e}")
            self._emit(VoiceConnectionError(guild_id, str(e) or "connection refused"))
            raise

        if isinstance(tracks, mafic.Playlist):
            tracks = tracks.tracks
        if not tracks:
            raise TrackLoadFailed(f"nothing playable at {track.url}")

        self._playing[guild_id] = track
        await player.play(tracks[0])

    async def pause(self, guild_id: int) -> None:
        await self._require_player(guild_id).pause()

    async def resume(self, guild_id: int) -> None:
        await self._require_player(guild_id).resume()

    async def stop(self, guild_id: int) -> None:
        player = self.get_player(guild_id)
        if player is not None:
            await player.stop()

    async def set_volume(self, guild_id: int, volume: int) -> None:
        player = self.get_player(guild_id)
        if player is not None:
            await player.set_volume(volume)

    # =========================================================================
    # Event translation
    # =========================================================================

    def _record_for(self, guild_id: int, track: mafic.Track | None) -> TrackRecord | None:
        """Our record for a mafic track, matched by uri. Falls back to a fresh conversion."""
        record = self._playing.get(guild_id)
        if track is None:
            return record
        if record is not None and record.url == track.uri:
            return record
        return to_record(track)

    def translate_start(self, event: mafic.TrackStartEvent) -> PlaybackEvent | None:
        guild_id = event.player.guild.id
        record = self._playing.get(guild_id)
        if record is None:
            return None
        return TrackStarted(guild_id, record)

    def translate_end(self, event: mafic.TrackEndEvent) -> PlaybackEvent | None:
        """FINISHED and STOPPED become events, LOAD_FAILED a failed skip. REPLACED and CLEANUP are dropped.

        LOAD_FAILED always follows a TrackExceptionEvent. The controller ignores it
        when recovery already replaced the track or is replaying the same url.
        """
        guild_id = event.player.guild.id
        record = self._record_for(guild_id, event.track)
        if event.reason == mafic.EndReason.FINISHED:
            return TrackFinished(guild_id, record)
        if event.reason == mafic.EndReason.STOPPED:
            return TrackSkipped(guild_id, record)
        if event.reason == mafic.EndReason.LOAD_FAILED:
            return TrackSkipped(guild_id, record, failed=True)
        return None

    def translate_exception(self, event: mafic.TrackExceptionEvent) -> PlaybackEvent:
        guild_id = event.player.guild.id
        exc = event.exception
        message = getattr(exc, "message", None) or str(exc)
        cause = getattr(exc, "cause", None)
        if cause and cause not in message:
            message = f"{message}: {cause}"
        return PlaybackError(guild_id, message, self._record_for(guild_id, event.track))

    def translate_stuck(self, event: mafic.TrackStuckEvent) -> PlaybackEvent:
        guild_id = event.player.guild.id
        return PlaybackError(
            guild_id,
            f"stream stuck for {event.threshold_ms}ms",
            self._record_for(guild_id, event.track),
        )

    def translate_websocket_closed(self, event: mafic.WebSocketClosedEvent) -> PlaybackEvent | None:
        if event.code in IGNORED_CLOSE_CODES:
            return None
        guild_id = event.player.guild.id
        return VoiceConnectionError(
            guild_id,
            f"voice websocket closed ({event.code}): {event.reason or 'no reason'}",
        )
