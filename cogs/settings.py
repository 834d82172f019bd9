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

"""Per-guild playback settings commands for Cadence."""

from typing import Literal

import discord
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.state import MAX_VOLUME, MIN_VOLUME, RepeatMode
from utils.response import ResponseMixin


class Settings(ResponseMixin, commands.Cog):
    """Volume, repeat and autoplay toggles. Settings live on the guild's playback state."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _check_bot_channel(self, interaction: discord.Interaction) -> bool:
        """VC check, only when the bot is connected. Settings need a live session."""
        player = self.bot.engine.get_player(interaction.guild_id)
        if player is None:
            return True
        return await self._check_same_vc(interaction, player.channel)

    @app_commands.command(name="volume", description="set playback volume")
    @app_commands.guild_only()
    @app_commands.describe(level=f"volume level from {MIN_VOLUME} to {MAX_VOLUME}")
    async def volume(
        self,
        interaction: discord.Interaction,
        level: app_commands.Range[int, MIN_VOLUME, MAX_VOLUME]
    ) -> None:
        if not await self._check_bot_channel(interaction):
            return

        state = self.bot.registry.get(interaction.guild_id)
        if state is None:
            await self.respond(interaction, "nothing_playing")
            return
        state.set_volume(level)
        await self.bot.engine.set_volume(interaction.guild_id, level)

        logger.info(f"{interaction.user.display_name} set volume to {level}")
        await self.respond(interaction, "volume_set", level=level)

    @app_commands.command(name="repeat", description="repeat the current track or the whole queue")
    @app_commands.guild_only()
    @app_commands.describe(mode="off, track or queue")
    async def repeat(self, interaction: discord.Interaction, mode: Literal["off", "track", "queue"]) -> None:
        if not await self._check_bot_channel(interaction):
            return

        state = self.bot.registry.get(interaction.guild_id)
        if state is None:
            await self.respond(interaction, "nothing_playing")
            return
        state.repeat_mode = RepeatMode(mode)

        logger.info(f"{interaction.user.display_name} set repeat to {mode}")
        await self.respond(interaction, "repeat_set", mode=mode)

    @app_commands.command(name="autoplay", description="keep playing related tracks when the queue runs out")
    @app_commands.guild_only()
    @app_commands.describe(enabled="on or off")
    async def autoplay(self, interaction: discord.Interaction, enabled: Literal["on", "off"]) -> None:
        if not await self._check_bot_channel(interaction):
            return

        state = self.bot.registry.get(interaction.guild_id)
        if state is None:
            await self.respond(interaction, "nothing_playing")
            return
        state.autoplay_enabled = enabled == "on"

        logger.info(f"{interaction.user.display_name} turned autoplay {enabled}")
        await self.respond(interaction, "autoplay_on" if state.autoplay_enabled else "autoplay_off")


async def setup(bot: commands.Bot) -> None:
    """Load the Settings cog."""
    await bot.add_cog(Settings(bot))
