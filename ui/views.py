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

"""Reusable UI views for Cadence.

PaginationView:
    Paginated list display with prev/next buttons. Used by /queue and
    /history. Times out after ui.extended_auto_delete seconds and deletes
    its message.
"""

from typing import Callable

import discord


class AutoDeleteView(discord.ui.View):
    """View that deletes its message on timeout. Set ``self.message`` after sending."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.message: discord.Message | None = None

    async def on_timeout(self) -> None:
        if self.message:
            try:
                await self.message.delete()
            except discord.HTTPException:
                pass


class PaginationView(AutoDeleteView):
    """Paginated view for long lists.

    Args:
        items: Full list of items to paginate
        page_size: Items per page
        format_page: Callback(items, page_num, total_pages) -> Embed
        timeout: Seconds before auto-delete (reads ui.extended_auto_delete if None)
        bot: Bot instance for config access
    """

    def __init__(
        self,
        items: list,
        page_size: int = 10,
        format_page: Callable[[list, int, int], discord.Embed] = None,
        timeout: float = None,
        bot=None,
    ) -> None:
        if timeout is None:
            timeout = bot.config_manager.section("ui").get("extended_auto_delete", 90) if bot else 90
        super().__init__(timeout=timeout or None)
        self.items = items
        self.page_size = max(1, page_size)
        self.format_page = format_page
        self.current_page = 0
        self.total_pages = max(1, (len(items) + self.page_size - 1) // self.page_size)

        self._update_buttons()

    def _update_buttons(self) -> None:
        self.prev_button.disabled = self.current_page <= 0
        self.next_button.disabled = self.current_page >= self.total_pages - 1

    def get_page_items(self) -> list:
        start = self.current_page * self.page_size
        return self.items[start:start + self.page_size]

    def current_embed(self) -> discord.Embed:
        return self.format_page(self.get_page_items(), self.current_page, self.total_pages)

    async def _turn(self, interaction: discord.Interaction, step: int) -> None:
        target = self.current_page + step
        if not 0 <= target < self.total_pages:
            await interaction.response.defer()
            return
        self.current_page = target
        self._update_buttons()
        await interaction.response.edit_message(embed=self.current_embed(), view=self)

    @discord.ui.button(emoji="◀️", style=discord.ButtonStyle.secondary)
    async def prev_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._turn(interaction, -1)

    @discord.ui.button(emoji="▶️", style=discord.ButtonStyle.secondary)
    async def next_button(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._turn(interaction, 1)
