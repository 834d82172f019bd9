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
Cadence Music Bot
========================================================

Streaming music bot built on discord.py and Lavalink (via mafic).
Queue, autoplay and playback recovery live in core/; cogs/ holds the
slash commands and forwards Lavalink events to the recovery controller.
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

import discord
import mafic
from discord.ext import commands
from dotenv import load_dotenv
from loguru import logger

from core.autoplay import AutoplayReplenisher
from core.duplicates import DuplicateFilter
from core.queue import QueueOrderingPolicy
from core.recovery import PlaybackRecoveryController
from core.settings import PlaybackSettings
from core.similarity import TitleSimilarity
from core.state import GuildStateRegistry
from systems.lavalink import LavalinkEngine
from utils.config import ConfigManager, validate_configuration

load_dotenv()

EXTENSIONS = ("cogs.music", "cogs.queue", "cogs.settings")

# =============================================================================
# LOGGING SETUP
# =============================================================================

# logging.level in settings.yaml -> loguru level
LOG_LEVELS = {
    "minimal": "NOTICE",
    "verbose": "INFO",
    "debug": "DEBUG",
}

# Between INFO and WARNING: startup/shutdown lines that should show in minimal mode
logger.level("NOTICE", no=25, color="<cyan><bold>")


class InterceptHandler(logging.Handler):
    """Route standard-library logging (discord.py, mafic) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> {message}",
    )
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)
    # Library chatter stays out of minimal/verbose output
    library_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in ("discord", "mafic"):
        logging.getLogger(name).setLevel(library_level)


# =============================================================================
# BOT
# =============================================================================

class Cadence(commands.Bot):
    """Bot wiring: config, playback core, Lavalink node and cogs."""

    def __init__(self) -> None:
        intents = discord.Intents.default()
        intents.voice_states = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents, help_command=None)

        _default_config = Path(__file__).parent / "config"
        self.config_manager = ConfigManager(Path(os.getenv("CONFIG_PATH") or str(_default_config)))
        self.pool = mafic.NodePool(self)

        # Built in setup_hook once settings are loaded
        self.playback_settings = PlaybackSettings()
        self.registry: GuildStateRegistry | None = None
        self.policy: QueueOrderingPolicy | None = None
        self.engine: LavalinkEngine | None = None
        self.replenisher: AutoplayReplenisher | None = None
        self.controller: PlaybackRecoveryController | None = None

    def build_core(self) -> None:
        settings = self.playback_settings
        duplicates = DuplicateFilter(TitleSimilarity(settings.similarity))
        self.registry = GuildStateRegistry(settings)
        self.policy = QueueOrderingPolicy(duplicates, settings.max_autoplay_tracks)
        self.engine = LavalinkEngine(self)
        self.replenisher = AutoplayReplenisher(self.engine, self.policy, duplicates, settings)
        self.controller = PlaybackRecoveryController(
            self.registry, self.engine, self.policy, self.replenisher, settings
        )
        self.engine.on_event = self.controller.dispatch

    async def setup_hook(self) -> None:
        await self.config_manager.load()
        level = self.config_manager.section("logging").get("level", "verbose")
        setup_logging(LOG_LEVELS.get(level, "INFO"))

        self.playback_settings = self.config_manager.playback_settings()
        self.build_core()

        await self.pool.create_node(
            host=os.getenv("LAVALINK_HOST", "127.0.0.1"),
            port=int(os.getenv("LAVALINK_PORT", "2333")),
            label="main",
            password=os.getenv("LAVALINK_PASSWORD", "youshallnotpass"),
        )
        logger.info("lavalink node connected")

        for extension in EXTENSIONS:
            await self.load_extension(extension)

        guild_id = os.getenv("GUILD_ID")
        if guild_id:
            guild = discord.Object(id=int(guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
        else:
            synced = await self.tree.sync()
        logger.debug(f"synced {len(synced)} commands")

    async def on_ready(self) -> None:
        # Autoplay tracks are credited to the bot itself
        self.replenisher.requester_id = str(self.user.id)
        logger.log("NOTICE", f"logged in as {self.user} ({len(self.guilds)} guilds)")

    async def close(self) -> None:
        logger.log("NOTICE", "shutting down")
        if self.registry is not None:
            self.registry.clear()
        await super().close()


def main() -> None:
    setup_logging()
    asyncio.run(validate_configuration())
    bot = Cadence()
    bot.run(os.environ["DISCORD_TOKEN"].strip(), log_handler=None)


if __name__ == "__main__":
    main()
