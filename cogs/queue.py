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

"""Queue and history commands for Cadence."""

import discord
from discord import app_commands
from discord.ext import commands
from loguru import logger

from core.state import RepeatMode
from ui.views import PaginationView
from utils.response import (
    ResponseMixin,
    escape_markdown,
    format_track_line,
    truncate_for_display,
    CHOICE_NAME_MAX,
    EMBED_TITLE_MAX,
)
from utils.search import autocomplete_queue


class Queue(ResponseMixin, commands.Cog):
    """Queue management commands.

    - /queue: now playing plus upcoming tracks, paginated
    - /history: recently finished tracks, newest first
    - /remove [position]: drop a queued track (fuzzy autocomplete)
    - /move [from] [to]: reorder a queued track
    - /shuffle: shuffle your picks, then the autoplay picks
    - /clear: empty the queue
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    @property
    def display_size(self) -> int:
        return self.bot.config_manager.get("queue_display_size", 10)

    @property
    def history_display_size(self) -> int:
        return self.bot.config_manager.get("history_display_size", 10)

    async def _send_paginated(
        self, interaction: discord.Interaction, items: list, page_size: int, format_page
    ) -> None:
        view = PaginationView(items=items, page_size=page_size, format_page=format_page, bot=self.bot)
        await interaction.response.send_message(embed=view.current_embed(), view=view, ephemeral=True)
        view.message = await interaction.original_response()  # Store for on_timeout

    @app_commands.command(name="queue", description="show the current queue")
    @app_commands.guild_only()
    async def queue(self, interaction: discord.Interaction) -> None:
        state = self.bot.registry.get(interaction.guild_id)
        if state is None or (state.current_track is None and not state.queue):
            await self.respond(interaction, "queue_empty")
            return

        current = state.current_track
        upcoming = list(enumerate(state.queue, start=1))
        color = self.bot.config_manager.get("embed_color", 0x5865F2)

        extras = []
        if state.repeat_mode is not RepeatMode.OFF:
            extras.append(f"repeat: {state.repeat_mode.value}")
        extras.append(f"autoplay: {'on' if state.autoplay_enabled else 'off'}")

        def format_queue_page(items: list, page: int, total: int) -> discord.Embed:
            embed = discord.Embed(title="queue", color=color)
            lines = []
            if current and page == 0:
                title = escape_markdown(truncate_for_display(current.title, EMBED_TITLE_MAX))
                lines.append(f"▶️ **{title}** [{current.display_duration}]\n")
            lines.extend(format_track_line(position, track) for position, track in items)
            if not items:
                lines.append("nothing queued")
            embed.description = "\n".join(lines)
            embed.set_footer(
                text=f"page {page + 1}/{total} · {len(upcoming)} queued · " + " · ".join(extras)
            )
            return embed

        await self._send_paginated(interaction, upcoming, self.display_size, format_queue_page)

    @app_commands.command(name="history", description="show recently played tracks")
    @app_commands.guild_only()
    async def history(self, interaction: discord.Interaction) -> None:
        state = self.bot.registry.get(interaction.guild_id)
        if state is None or not state.history:
            await self.respond(interaction, "history_empty")
            return

        played = list(enumerate(state.history, start=1))
        color = self.bot.config_manager.get("embed_color", 0x5865F2)

        def format_history_page(items: list, page: int, total: int) -> discord.Embed:
            embed = discord.Embed(title="recently played", color=color)
            embed.description = "\n".join(format_track_line(position, track) for position, track in items)
            embed.set_footer(text=f"page {page + 1}/{total}")
            return embed

        await self._send_paginated(interaction, played, self.history_display_size, format_history_page)

    async def position_autocomplete(
        self,
        interaction: discord.Interaction,
        current: str
    ) -> list[app_commands.Choice[int]]:
        """Fuzzy match queued titles. Value is the 1-based queue position."""
        state = self.bot.registry.get(interaction.guild_id)
        if state is None or not state.queue:
            return []

        choices = []
        for index, track, _ in autocomplete_queue(current, state.queue, max_results=25):
            display = truncate_for_display(f"{index + 1}. {track.display_name}", CHOICE_NAME_MAX)
            choices.append(app_commands.Choice(name=display, value=index + 1))
        return choices

    @app_commands.command(name="remove", description="remove a track from the queue")
    @app_commands.guild_only()
    @app_commands.describe(position="queue position (type to search)")
    @app_commands.autocomplete(position=position_autocomplete)
    async def remove(self, interaction: discord.Interaction, position: int) -> None:
        state = self.bot.registry.get(interaction.guild_id)
        if state is None or not state.queue:
            await self.respond(interaction, "queue_empty")
            return

        removed = self.bot.policy.remove(state, position - 1)
        if removed is None:
            await self.respond(interaction, "invalid_position", position=position)
            return

        logger.info(f"{interaction.user.display_name} removed {removed.title!r} from position {position}")
        await self.respond(interaction, "removed", title=escape_markdown(removed.title))

    @app_commands.command(name="move", description="move a track to another queue position")
    @app_commands.guild_only()
    @app_commands.describe(
        from_position="track to move (type to search)",
        to_position="new queue position",
    )
    @app_commands.autocomplete(from_position=position_autocomplete)
    async def move(
        self,
        interaction: discord.Interaction,
        from_position: int,
        to_position: app_commands.Range[int, 1],
    ) -> None:
        state = self.bot.registry.get(interaction.guild_id)
        if state is None or not state.queue:
            await self.respond(interaction, "queue_empty")
            return

        moved = self.bot.policy.move(state, from_position - 1, to_position - 1)
        if moved is None:
            await self.respond(interaction, "invalid_position", position=from_position)
            return

        position = min(to_position, len(state.queue))
        logger.info(f"{interaction.user.display_name} moved {moved.title!r} from {from_position} to {position}")
        await self.respond(interaction, "moved", title=escape_markdown(moved.title), position=position)

    @app_commands.command(name="shuffle", description="shuffle the queue (autoplay picks stay last)")
    @app_commands.guild_only()
    async def shuffle(self, interaction: discord.Interaction) -> None:
        state = self.bot.registry.get(interaction.guild_id)
        if state is None or not state.queue:
            await self.respond(interaction, "queue_empty")
            return

        count = self.bot.policy.shuffle(state)
        logger.info(f"{interaction.user.display_name} shuffled {count} tracks")
        await self.respond(interaction, "shuffled", count=count)

    @app_commands.command(name="clear", description="clear the queue (current track keeps playing)")
    @app_commands.guild_only()
    async def clear(self, interaction: discord.Interaction) -> None:
        state = self.bot.registry.get(interaction.guild_id)
        if state is None or not state.queue:
            await self.respond(interaction, "queue_empty")
            return

        count = self.bot.policy.clear(state)
        logger.info(f"{interaction.user.display_name} cleared {count} tracks")
        await self.respond(interaction, "queue_cleared", count=count)


async def setup(bot: commands.Bot) -> None:
    """Load the Queue cog."""
    await bot.add_cog(Queue(bot))
