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

"""Music playback commands for Cadence."""

import asyncio
import re

import discord
import mafic
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.engine import SearchMode, SearchOptions, SearchResult
from core.state import GuildPlaybackState
from utils.response import (
    ResponseMixin,
    escape_markdown,
    truncate_for_display,
    EMBED_FIELD_MAX,
    EMBED_TITLE_MAX,
)

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

# Tracks taken from a pasted playlist url
PLAYLIST_IMPORT_LIMIT = 100


class Music(ResponseMixin, commands.Cog):
    """Playback commands plus the bridge from mafic events to the recovery controller."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self.inactivity_tasks: dict[int, asyncio.Task] = {}

    async def cog_unload(self) -> None:
        for task in self.inactivity_tasks.values():
            if not task.done():
                task.cancel()
        self.inactivity_tasks.clear()

    @property
    def controller(self):
        return self.bot.controller

    @property
    def engine(self):
        return self.bot.engine

    # =========================================================================
    # Inactivity
    # =========================================================================

    def _get_timeout_seconds(self) -> int:
        minutes = self.bot.config_manager.get("inactivity_timeout", 5)
        return minutes * 60

    def _start_inactivity_timer(self, guild_id: int) -> None:
        self._cancel_inactivity_timer(guild_id)
        timeout = self._get_timeout_seconds()
        if timeout <= 0:
            return
        self.inactivity_tasks[guild_id] = asyncio.create_task(self._inactivity_countdown(guild_id, timeout))
        logger.debug(f"guild {guild_id}: starting {timeout}s inactivity timer")

    def _cancel_inactivity_timer(self, guild_id: int) -> None:
        if task := self.inactivity_tasks.pop(guild_id, None):
            if not task.done():
                task.cancel()
                logger.debug(f"guild {guild_id}: inactivity timer cancelled")

    async def _inactivity_countdown(self, guild_id: int, timeout: int) -> None:
        try:
            await asyncio.sleep(timeout)
            logger.info(f"guild {guild_id}: alone in voice, disconnecting")
            self.inactivity_tasks.pop(guild_id, None)
            await self.controller.stop(guild_id)
        except asyncio.CancelledError:
            pass

    @staticmethod
    def _has_listeners(channel) -> bool:
        return any(not m.bot for m in channel.members)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def ensure_voice(self, interaction: discord.Interaction) -> GuildPlaybackState | None:
        """Make sure the bot sits in the user's channel. Returns the guild state or None."""
        if not interaction.user.voice or not interaction.user.voice.channel:
            await self.respond(interaction, "not_in_vc")
            return None

        user_channel = interaction.user.voice.channel
        guild_id = interaction.guild_id
        player = self.engine.get_player(guild_id)

        if interaction.guild.voice_client and not player:
            await self.respond(interaction, "voice_error")
            return None

        if player:
            if player.channel != user_channel:
                await self.respond(interaction, "wrong_vc", channel=player.channel.mention)
                return None
        else:
            permissions = user_channel.permissions_for(interaction.guild.me)
            if not permissions.connect or not permissions.speak:
                await self.respond(interaction, "need_vc_permissions")
                return None
            try:
                await self.engine.connect(guild_id, user_channel.id)
            except Exception as e:
                logger.error(f"guild {guild_id}: voice connection failed: {e}")
                await self.respond(interaction, "failed_join_vc")
                return None
            logger.info(f"summoned by {interaction.user.display_name} to #{user_channel.name}")

        is_new = guild_id not in self.bot.registry
        state = self.bot.registry.get_or_create(guild_id)
        state.text_channel_id = interaction.channel_id
        if is_new:
            await self.engine.set_volume(guild_id, state.volume)
        return state

    async def _search(self, interaction: discord.Interaction, query: str) -> SearchResult | None:
        """Resolve a /play query. Urls load directly (playlists included), text searches take the top hit."""
        settings = self.bot.playback_settings
        is_url = bool(_URL_RE.match(query))
        options = SearchOptions(
            mode=SearchMode.URL if is_url else settings.search_mode,
            requester_id=str(interaction.user.id),
            guild_id=interaction.guild_id,
            limit=PLAYLIST_IMPORT_LIMIT if is_url else 1,
        )
        try:
            return await self.engine.search(query, options)
        except Exception:
            logger.opt(exception=True).warning(f"guild {interaction.guild_id}: search failed for {query!r}")
            await self.respond(interaction, "search_failed")
            return None

    async def _queue_query(self, interaction: discord.Interaction, query: str, *, play_next: bool) -> None:
        if not self.bot.pool.nodes:
            await self.respond(interaction, "music_unavailable")
            return

        state = await self.ensure_voice(interaction)
        if state is None:
            return

        await interaction.response.defer(ephemeral=True)

        result = await self._search(interaction, query.strip())
        if result is None:
            return
        if not result:
            await self.respond(interaction, "song_not_found")
            return

        # State may have been torn down while searching
        if state.destroyed:
            await self.respond(interaction, "error_generic")
            return

        inserted = self.bot.policy.insert(state, result.tracks, manual=True, play_immediately=play_next)
        if not inserted:
            await self.respond(interaction, "nothing_added")
            return

        first = inserted.added[0]
        logger.info(
            f"{interaction.user.display_name} queued {inserted.count} track(s), "
            f"first {first.title!r} at {inserted.position}"
        )

        if state.is_idle:
            self._cancel_inactivity_timer(interaction.guild_id)
            started = await self.controller.advance(interaction.guild_id)
            if started is None and state.is_idle:
                await self.respond(interaction, "track_play_error")
                return
            if inserted.count == 1:
                await self.respond(interaction, "now_playing", title=escape_markdown(first.title))
                return

        if inserted.count > 1:
            await self.respond(interaction, "queued_many", count=inserted.count)
        elif play_next:
            await self.respond(interaction, "queued_next", title=escape_markdown(first.title))
        else:
            await self.respond(
                interaction, "queued", title=escape_markdown(first.title), position=inserted.position + 1
            )

    def _active_state(self, guild_id: int) -> GuildPlaybackState | None:
        state = self.bot.registry.get(guild_id)
        if state is None or state.current_track is None:
            return None
        return state

    # =========================================================================
    # Commands
    # =========================================================================

    @app_commands.command(name="play", description="search for a song or paste a link")
    @app_commands.guild_only()
    @app_commands.describe(query="song name or url")
    async def play(self, interaction: discord.Interaction, query: str) -> None:
        await self._queue_query(interaction, query, play_next=False)

    @app_commands.command(name="playnext", description="queue a song to play right after the current one")
    @app_commands.guild_only()
    @app_commands.describe(query="song name or url")
    async def playnext(self, interaction: discord.Interaction, query: str) -> None:
        await self._queue_query(interaction, query, play_next=True)

    @app_commands.command(name="skip", description="skip to the next track")
    @app_commands.guild_only()
    async def skip(self, interaction: discord.Interaction) -> None:
        state = self._active_state(interaction.guild_id)
        player = self.engine.get_player(interaction.guild_id)
        if state is None or player is None:
            await self.respond(interaction, "nothing_playing")
            return
        if not await self._check_same_vc(interaction, player.channel):
            return

        await interaction.response.defer(ephemeral=True)
        skipped = await self.controller.skip(interaction.guild_id)
        if skipped is None:
            await self.respond(interaction, "nothing_playing")
            return
        logger.info(f"{interaction.user.display_name} skipped {skipped.title!r}")
        await self.respond(interaction, "skipped", title=escape_markdown(skipped.title))

    @app_commands.command(name="pause", description="pause playback")
    @app_commands.guild_only()
    async def pause(self, interaction: discord.Interaction) -> None:
        player = self.engine.get_player(interaction.guild_id)
        if self._active_state(interaction.guild_id) is None or player is None:
            await self.respond(interaction, "nothing_playing")
            return
        if not await self._check_same_vc(interaction, player.channel):
            return
        if player.paused:
            await self.respond(interaction, "already_paused")
            return

        await self.engine.pause(interaction.guild_id)
        logger.info(f"paused by {interaction.user.display_name}")
        await self.respond(interaction, "paused")

    @app_commands.command(name="resume", description="resume playback")
    @app_commands.guild_only()
    async def resume(self, interaction: discord.Interaction) -> None:
        player = self.engine.get_player(interaction.guild_id)
        if self._active_state(interaction.guild_id) is None or player is None:
            await self.respond(interaction, "nothing_playing")
            return
        if not await self._check_same_vc(interaction, player.channel):
            return
        if not player.paused:
            await self.respond(interaction, "not_paused")
            return

        await self.engine.resume(interaction.guild_id)
        logger.info(f"resumed by {interaction.user.display_name}")
        await self.respond(interaction, "resumed")

    async def _stop(self, interaction: discord.Interaction) -> None:
        guild_id = interaction.guild_id
        player = self.engine.get_player(guild_id)
        if player is None and guild_id not in self.bot.registry:
            await self.respond(interaction, "nothing_playing")
            return
        if player is not None and not await self._check_same_vc(interaction, player.channel):
            return

        await interaction.response.defer(ephemeral=True)
        self._cancel_inactivity_timer(guild_id)
        await self.controller.stop(guild_id)
        logger.info(f"stopped by {interaction.user.display_name}")
        await self.respond(interaction, "stopped")

    @app_commands.command(name="stop", description="stop playback, clear the queue and disconnect")
    @app_commands.guild_only()
    async def stop(self, interaction: discord.Interaction) -> None:
        await self._stop(interaction)

    @app_commands.command(name="leave", description="leave the voice channel")
    @app_commands.guild_only()
    async def leave(self, interaction: discord.Interaction) -> None:
        await self._stop(interaction)

    @app_commands.command(name="songinfo", description="show details about the current track")
    @app_commands.guild_only()
    async def songinfo(self, interaction: discord.Interaction) -> None:
        state = self._active_state(interaction.guild_id)
        if state is None:
            await self.respond(interaction, "nothing_playing")
            return

        track = state.current_track
        embed = discord.Embed(
            title=truncate_for_display(track.title, EMBED_TITLE_MAX),
            url=track.url or None,
            color=self.bot.config_manager.get("embed_color", 0x5865F2),
        )
        if track.author:
            embed.add_field(name="artist", value=truncate_for_display(track.author, EMBED_FIELD_MAX))
        embed.add_field(name="duration", value=track.display_duration)
        requester = f"<@{track.requester_id}>" if track.requester_id else "unknown"
        embed.add_field(name="requested by", value="autoplay" if track.is_autoplay else requester)
        embed.add_field(name="up next", value=str(len(state.queue)))
        if track.thumbnail:
            embed.set_thumbnail(url=track.thumbnail)

        delete_after = self.bot.config_manager.section("ui").get("extended_auto_delete", 90)
        await interaction.response.send_message(embed=embed, ephemeral=True, delete_after=delete_after or None)

    # =========================================================================
    # mafic events
    # =========================================================================

    async def _forward(self, event) -> None:
        if event is not None:
            await self.controller.dispatch(event)

    @commands.Cog.listener()
    async def on_track_start(self, event: mafic.TrackStartEvent) -> None:
        self._cancel_inactivity_timer(event.player.guild.id)
        await self._forward(self.engine.translate_start(event))

    @commands.Cog.listener()
    async def on_track_end(self, event: mafic.TrackEndEvent) -> None:
        # mafic.EndReason values are lowercase ("replaced", not "REPLACED")
        if event.reason == mafic.EndReason.REPLACED:
            return
        await self._forward(self.engine.translate_end(event))

    @commands.Cog.listener()
    async def on_track_exception(self, event: mafic.TrackExceptionEvent) -> None:
        logger.warning(f"guild {event.player.guild.id}: track exception: {event.exception}")
        await self._forward(self.engine.translate_exception(event))

    @commands.Cog.listener()
    async def on_track_stuck(self, event: mafic.TrackStuckEvent) -> None:
        logger.warning(f"guild {event.player.guild.id}: track stuck (threshold: {event.threshold_ms}ms)")
        await self._forward(self.engine.translate_stuck(event))

    @commands.Cog.listener()
    async def on_websocket_closed(self, event: mafic.WebSocketClosedEvent) -> None:
        logger.debug(
            f"voice websocket closed: code={event.code}, "
            f"reason={event.reason!r}, by_discord={event.by_discord}"
        )
        await self._forward(self.engine.translate_websocket_closed(event))

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Destroy state when the bot is disconnected; auto-leave when it's left alone."""
        guild_id = member.guild.id

        if member.id == self.bot.user.id:
            if before.channel and not after.channel:
                if self.controller.is_rejoining(guild_id):
                    return
                logger.info(f"guild {guild_id}: disconnected from voice")
                self._cancel_inactivity_timer(guild_id)
                await self.controller.stop(guild_id, disconnect=False)
            elif after.channel and before.channel != after.channel:
                logger.info(f"guild {guild_id}: moved to #{after.channel.name}")
                if self._has_listeners(after.channel):
                    self._cancel_inactivity_timer(guild_id)
                else:
                    self._start_inactivity_timer(guild_id)
            return

        if member.bot:
            return
        player = self.engine.get_player(guild_id)
        if not player or not player.connected or not player.channel:
            return

        bot_channel = player.channel
        left_bot_channel = before.channel == bot_channel and after.channel != bot_channel
        joined_bot_channel = after.channel == bot_channel and before.channel != bot_channel
        if not (left_bot_channel or joined_bot_channel):
            return

        if self._has_listeners(bot_channel):
            self._cancel_inactivity_timer(guild_id)
        else:
            self._start_inactivity_timer(guild_id)


async def setup(bot: commands.Bot) -> None:
    """Load the Music cog."""
    await bot.add_cog(Music(bot))
