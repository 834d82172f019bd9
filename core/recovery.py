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
Playback Recovery

Single consumer of engine events. Keeps history and the current track in
sync with what the engine reports, advances the queue, triggers autoplay,
and recovers from stream and connection failures.

Failure handling is bounded: every dispatched track gets at most one
substitution or resume attempt. A second failure on the same slot skips.

Anything that awaits the engine re-checks afterwards that the guild state
is still the same generation and that the track it was recovering is still
current. If not, the recovery is dropped.
"""

import asyncio
from enum import Enum

from loguru import logger

from core.autoplay import AutoplayReplenisher
from core.engine import AudioEngine, SearchMode, SearchOptions, SearchResult
from core.events import (
    PlaybackError,
    PlaybackEvent,
    TrackFinished,
    TrackSkipped,
    TrackStarted,
    VoiceConnectionError,
)
from core.queue import QueueOrderingPolicy
from core.settings import PlaybackSettings
from core.state import GuildPlaybackState, GuildStateRegistry, RepeatMode
from core.track import TrackRecord


class FailureKind(str, Enum):
    CONNECTION = "connection"
    STREAM_EXTRACTION = "stream_extraction"
    DOWNLOAD = "download"
    PARSER = "parser"
    STREAM = "stream"
    UNKNOWN = "unknown"


# Checked top to bottom, first hit wins. Lowercase substrings.
FAILURE_SIGNATURES: tuple[tuple[FailureKind, tuple[str, ...]], ...] = (
    (FailureKind.PARSER, ("innertubeerror", "parsingerror", "youtubei.js", "compositevideoerror")),
    (FailureKind.CONNECTION, ("econnreset", "econnrefused", "etimedout", "connection reset by peer")),
    (FailureKind.STREAM_EXTRACTION, ("could not extract stream", "streaming data not available", "chooseformat")),
    (FailureKind.DOWNLOAD, ("invalid url", "no data received", "download failed", "stream failed")),
    (FailureKind.STREAM, ("ffmpeg", "stream")),
)


def classify_failure(message: str | None) -> tuple[FailureKind, str]:
    """Map an engine error message to a failure kind and the signature that matched."""
    lowered = (message or "").lower()
    for kind, signatures in FAILURE_SIGNATURES:
        for signature in signatures:
            if signature in lowered:
                return kind, signature
    return FailureKind.UNKNOWN, ""


class PlaybackRecoveryController:
    """Handles engine events for every guild.

    Args:
        registry: Guild state owner
        engine: Audio engine (voice + search)
        policy: Queue policy (pop, requeue)
        replenisher: Autoplay, run after every finished or skipped track
        settings: Backoff window, recovery search mode, parser-error handling
    """

    def __init__(
        self,
        registry: GuildStateRegistry,
        engine: AudioEngine,
        policy: QueueOrderingPolicy,
        replenisher: AutoplayReplenisher,
        settings: PlaybackSettings | None = None,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.policy = policy
        self.replenisher = replenisher
        self.settings = settings or PlaybackSettings()

        # Serializes end-of-track handling, recovery and queue advancement per guild
        self._playback_locks: dict[int, asyncio.Lock] = {}
        self._rejoining: set[int] = set()

    def _get_playback_lock(self, guild_id: int) -> asyncio.Lock:
        if guild_id not in self._playback_locks:
            self._playback_locks[guild_id] = asyncio.Lock()
        return self._playback_locks[guild_id]

    # =========================================================================
    # Public operations
    # =========================================================================

    async def dispatch(self, event: PlaybackEvent) -> None:
        """Handle one engine event. Never raises."""
        try:
            if isinstance(event, TrackStarted):
                self._on_started(event)
            elif isinstance(event, TrackFinished):
                await self._on_track_end(event.guild_id, event.track, finished=True)
            elif isinstance(event, TrackSkipped):
                await self._on_track_end(event.guild_id, event.track, finished=False, failed=event.failed)
            elif isinstance(event, VoiceConnectionError):
                _, signature = classify_failure(event.message)
                await self._recover_connection(event.guild_id, signature or "voice", event.message)
            elif isinstance(event, PlaybackError):
                await self._on_playback_error(event)
            else:
                logger.warning(f"unhandled playback event: {event!r}")
        except Exception:
            logger.opt(exception=True).error(
                f"guild {event.guild_id}: error handling {type(event).__name__}"
            )

    async def advance(self, guild_id: int) -> TrackRecord | None:
        """Start the next queued track if nothing is current. Returns the track started."""
        state = self.registry.get(guild_id)
        if state is None:
            return None
        async with self._get_playback_lock(guild_id):
            if state.destroyed:
                return None
            return await self._advance_locked(state)

    async def skip(self, guild_id: int) -> TrackRecord | None:
        """Skip the current track. Returns the skipped track, None if nothing was playing."""
        state = self.registry.get(guild_id)
        if state is None or state.current_track is None:
            return None
        skipped = state.current_track
        await self.dispatch(TrackSkipped(guild_id, skipped))
        return skipped

    async def stop(self, guild_id: int, *, disconnect: bool = True) -> bool:
        """Destroy the guild's state and, unless told otherwise, leave voice.

        Returns True if there was state to destroy.
        """
        existed = self.registry.destroy(guild_id)
        self._playback_locks.pop(guild_id, None)
        self._rejoining.discard(guild_id)
        if disconnect:
            try:
                await self.engine.disconnect(guild_id)
            except Exception:
                logger.opt(exception=True).warning(f"guild {guild_id}: disconnect failed")
        return existed

    def is_rejoining(self, guild_id: int) -> bool:
        """True while a voice rejoin is in flight (the engine drops the old connection first)."""
        return guild_id in self._rejoining

    # =========================================================================
    # Track lifecycle
    # =========================================================================

    def _on_started(self, event: TrackStarted) -> None:
        if event.guild_id not in self.registry:
            logger.debug(f"guild {event.guild_id}: track started without playback state")
            return
        self.registry.record_now_playing(event.guild_id, event.track)
        logger.debug(f"guild {event.guild_id}: now playing {event.track.title!r}")

    async def _on_track_end(
        self, guild_id: int, track: TrackRecord | None, *, finished: bool, failed: bool = False
    ) -> None:
        state = self.registry.get(guild_id)
        if state is None:
            return
        async with self._get_playback_lock(guild_id):
            if state.destroyed or state.current_track is None:
                return
            # End events for a track we already moved past (replaced, substituted)
            if track is not None and not state.is_current(track):
                logger.debug(f"guild {guild_id}: ignoring end of stale track {track.title!r}")
                return
            if failed and state.awaiting_failure_end == state.current_track.url:
                state.awaiting_failure_end = None
                logger.debug(f"guild {guild_id}: failure end of {state.current_track.title!r} left to recovery")
                return

            ended = self.registry.record_finished(guild_id)
            if state.repeat_mode is RepeatMode.TRACK and finished:
                self.policy.requeue(state, ended, front=True)
            elif state.repeat_mode is RepeatMode.QUEUE:
                self.policy.requeue(state, ended, front=False)

            logger.debug(f"guild {guild_id}: {'finished' if finished else 'skipped'} {ended.title!r}")
            await self._continue_playback(state)

    async def _continue_playback(self, state: GuildPlaybackState) -> None:
        """Advance, topping up with autoplay. Lock must be held."""
        generation = state.generation
        if state.queue:
            await self._advance_locked(state)
            if state.is_alive(generation):
                await self.replenisher.replenish(state)
        else:
            await self.replenisher.replenish(state)
            if state.is_alive(generation):
                await self._advance_locked(state)

        if state.is_alive(generation) and state.current_track is None:
            logger.info(f"guild {state.guild_id}: queue finished")
            if self.engine.is_playing(state.guild_id):
                await self.engine.stop(state.guild_id)

    async def _advance_locked(self, state: GuildPlaybackState) -> TrackRecord | None:
        """Pop and start queued tracks until one plays. Unloadable tracks are dropped."""
        guild_id = state.guild_id
        generation = state.generation
        while state.current_track is None and state.is_alive(generation):
            track = self.policy.pop_next(state)
            if track is None:
                return None

            state.recovery_attempted = False
            state.awaiting_failure_end = None
            self.registry.record_now_playing(guild_id, track)
            try:
                await self.engine.play(guild_id, track)
            except LookupError:
                logger.warning(f"guild {guild_id}: could not load {track.title!r}, dropping it")
                if state.is_alive(generation) and state.current_track is track:
                    state.current_track = None
                continue
            except Exception:
                logger.opt(exception=True).error(f"guild {guild_id}: failed to start {track.title!r}")
                if state.is_alive(generation) and state.current_track is track:
                    state.current_track = None
                    self.policy.requeue(state, track, front=True)
                return None
            return track
        return None

    async def _skip_locked(self, state: GuildPlaybackState, reason: str) -> None:
        skipped = self.registry.record_finished(state.guild_id)
        if skipped is not None:
            logger.info(f"guild {state.guild_id}: skipped {skipped.title!r} ({reason})")
        await self._continue_playback(state)

    # =========================================================================
    # Failure recovery
    # =========================================================================

    async def _recover_connection(self, guild_id: int, signature: str, message: str) -> None:
        state = self.registry.get(guild_id)
        if state is None:
            return
        if self.engine.is_connected(guild_id):
            logger.info(f"guild {guild_id}: connection error [{signature}] but voice is healthy: {message}")
            return
        if guild_id in self._rejoining:
            logger.debug(f"guild {guild_id}: rejoin already in progress")
            return

        logger.warning(f"guild {guild_id}: connection lost [{signature}], rejoining: {message}")
        generation = state.generation
        self._rejoining.add(guild_id)
        try:
            rejoined = await self.engine.rejoin(guild_id)
        except Exception:
            logger.opt(exception=True).error(f"guild {guild_id}: rejoin raised")
            rejoined = False
        finally:
            self._rejoining.discard(guild_id)

        if not state.is_alive(generation):
            return
        if rejoined:
            logger.info(f"guild {guild_id}: rejoined voice after [{signature}]")
        else:
            logger.error(f"guild {guild_id}: rejoin failed after [{signature}]")

    async def _on_playback_error(self, event: PlaybackError) -> None:
        guild_id = event.guild_id
        kind, signature = classify_failure(event.message)

        if kind is FailureKind.CONNECTION:
            await self._recover_connection(guild_id, signature, event.message)
            return
        if kind is FailureKind.UNKNOWN:
            logger.warning(f"guild {guild_id}: unclassified playback error, not handled: {event.message}")
            return
        if kind is FailureKind.PARSER and not self.settings.skip_on_parser_error:
            logger.warning(f"guild {guild_id}: parser error [{signature}], not handled: {event.message}")
            return

        state = self.registry.get(guild_id)
        if state is None:
            return
        async with self._get_playback_lock(guild_id):
            failed = state.current_track
            if state.destroyed or failed is None:
                logger.debug(f"guild {guild_id}: {kind.value} error with nothing playing")
                return
            if event.track is not None and not state.is_current(event.track):
                logger.debug(f"guild {guild_id}: ignoring {kind.value} error for stale track")
                return

            logger.warning(f"guild {guild_id}: {kind.value} failure on {failed.title!r} [{signature}]")

            if kind is FailureKind.PARSER:
                await self._skip_locked(state, f"parser error [{signature}]")
                return
            if state.recovery_attempted:
                await self._skip_locked(state, f"second failure [{signature}]")
                return
            state.recovery_attempted = True
            if kind in (FailureKind.STREAM, FailureKind.DOWNLOAD):
                state.awaiting_failure_end = failed.url

            if kind is FailureKind.STREAM_EXTRACTION:
                options = SearchOptions(
                    mode=self.settings.recovery_search_mode,
                    requester_id=failed.requester_id,
                    guild_id=guild_id,
                )
                await self._substitute(state, failed, failed.title, options, signature, require_new_url=True)
            elif kind is FailureKind.DOWNLOAD:
                options = SearchOptions(mode=SearchMode.URL, requester_id=failed.requester_id, guild_id=guild_id)
                await self._substitute(state, failed, failed.url, options, signature, require_new_url=False)
            else:
                await self._pause_and_schedule_resume(state, failed, signature)

    async def _substitute(
        self,
        state: GuildPlaybackState,
        failed: TrackRecord,
        query: str,
        options: SearchOptions,
        signature: str,
        *,
        require_new_url: bool,
    ) -> None:
        """Swap the failed track for a fresh search result, or skip it."""
        guild_id = state.guild_id
        generation = state.generation
        try:
            result = await self.engine.search(query, options)
        except Exception:
            logger.opt(exception=True).warning(f"guild {guild_id}: substitute search failed for {query!r}")
            result = SearchResult()

        if not state.is_alive(generation) or not state.is_current(failed):
            logger.debug(f"guild {guild_id}: state moved on during substitute search, dropping recovery")
            return

        found = next(
            (t for t in result.tracks if not require_new_url or t.url != failed.url),
            None,
        )
        if found is None:
            await self._skip_locked(state, f"no substitute [{signature}]")
            return

        replacement = failed.substitute(found)
        self.registry.record_now_playing(guild_id, replacement)
        try:
            await self.engine.play(guild_id, replacement)
        except Exception:
            logger.opt(exception=True).error(f"guild {guild_id}: failed to start substitute {replacement.title!r}")
            if state.is_alive(generation) and state.is_current(replacement):
                await self._skip_locked(state, f"substitute failed [{signature}]")
            return
        logger.info(
            f"guild {guild_id}: replaced {failed.title!r} with {replacement.title!r} [{signature}]"
        )

    async def _pause_and_schedule_resume(
        self, state: GuildPlaybackState, track: TrackRecord, signature: str
    ) -> None:
        guild_id = state.guild_id
        if self.engine.is_playing(guild_id):
            await self.engine.pause(guild_id)
        # Scheduled even when idle: Lavalink drops the track on failure, so the timer replays it
        if state.destroyed or not state.is_current(track):
            return
        delay = self.settings.recovery_backoff_seconds
        state.track_task(asyncio.create_task(
            self._resume_after_backoff(state, state.generation, track, delay, signature)
        ))
        logger.info(f"guild {guild_id}: paused {track.title!r}, resuming in {delay:g}s [{signature}]")

    async def _resume_after_backoff(
        self,
        state: GuildPlaybackState,
        generation: int,
        track: TrackRecord,
        delay: float,
        signature: str,
    ) -> None:
        guild_id = state.guild_id
        await asyncio.sleep(delay)
        if not state.is_alive(generation) or not state.is_current(track):
            logger.debug(f"guild {guild_id}: resume timer fired for a state that moved on")
            return

        async with self._get_playback_lock(guild_id):
            if not state.is_alive(generation) or not state.is_current(track):
                return
            try:
                await self.engine.resume(guild_id)
                if not self.engine.is_playing(guild_id):
                    await self.engine.play(guild_id, track)
                    logger.info(f"guild {guild_id}: restarted {track.title!r} [{signature}]")
                else:
                    logger.info(f"guild {guild_id}: resumed {track.title!r} [{signature}]")
            except Exception:
                logger.opt(exception=True).error(f"guild {guild_id}: resume failed for {track.title!r}")
                if state.is_alive(generation) and state.is_current(track):
                    await self._skip_locked(state, f"resume failed [{signature}]")
