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

"""Response utilities for Discord interactions.

Provides ResponseMixin for consistent message handling across cogs, plus
display helpers shared by queue/history embeds.
"""

import asyncio

import discord

from core.track import TrackRecord

# Track fire-and-forget cleanup tasks to prevent GC warnings
_cleanup_tasks: set[asyncio.Task] = set()


def escape_markdown(text: str) -> str:
    """Escape characters Discord would turn into formatting (underscores, asterisks)."""
    return text.replace("_", "\\_").replace("*", "\\*")


# =============================================================================
# DISPLAY TRUNCATION
# =============================================================================
# Always truncate BEFORE escape_markdown (escaping can add characters).

QUEUE_TITLE_MAX = 60       # per line in paginated embeds (4096 total)
CHOICE_NAME_MAX = 97       # app_commands.Choice.name (limit 100)
EMBED_FIELD_MAX = 1000     # embed field value (limit 1024)
EMBED_TITLE_MAX = 240      # embed title (limit 256)


def truncate_for_display(text: str, max_length: int) -> str:
    """Truncate text with "..." so the result is at most ``max_length`` long."""
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def format_track_line(position: int, track: TrackRecord) -> str:
    """One queue/history line: ``3. Title [3:45]``, autoplay tracks marked."""
    title = escape_markdown(truncate_for_display(track.title, QUEUE_TITLE_MAX))
    marker = " · autoplay" if track.is_autoplay else ""
    return f"`{position}.` {title} [{track.display_duration}]{marker}"


class ResponseMixin:
    """Mixin providing standardized interaction responses for cogs.

    respond() honours the per-message ``enabled`` flag from messages.yaml and
    auto-deletes after ``ui.brief_auto_delete`` seconds, on both the initial
    response and the followup path.

    Requirements:
        self.bot.config_manager with msg(), is_enabled() and section()
    """

    def msg(self, key: str, **kwargs) -> str:
        return self.bot.config_manager.msg(key, **kwargs)

    async def _delete_response(self, interaction: discord.Interaction, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await interaction.delete_original_response()
        except asyncio.CancelledError:
            pass  # shutdown during wait
        except discord.HTTPException:
            pass  # already gone

    async def respond(self, interaction: discord.Interaction, key: str, **kwargs) -> None:
        """Send ephemeral message if enabled, otherwise acknowledge silently."""
        config = self.bot.config_manager
        if not config.is_enabled(key):
            if not interaction.response.is_done():
                await interaction.response.defer(ephemeral=True)
            try:
                await interaction.delete_original_response()
            except discord.NotFound:
                pass
            return

        text = self.msg(key, **kwargs)
        timeout = config.section("ui").get("brief_auto_delete", 10)
        delete_after = timeout if timeout > 0 else None

        if not interaction.response.is_done():
            await interaction.response.send_message(text, ephemeral=True, delete_after=delete_after)
        else:
            await interaction.followup.send(text, ephemeral=True)
            if delete_after:
                task = asyncio.create_task(self._delete_response(interaction, delete_after))
                _cleanup_tasks.add(task)
                task.add_done_callback(_cleanup_tasks.discard)

    async def _check_same_vc(self, interaction: discord.Interaction, channel) -> bool:
        """Check the user sits in ``channel`` (the bot's channel). Responds on denial."""
        if not interaction.user.voice or not interaction.user.voice.channel:
            await self.respond(interaction, "not_in_vc")
            return False
        if channel is not None and interaction.user.voice.channel != channel:
            await self.respond(interaction, "wrong_vc", channel=channel.mention)
            return False
        return True
