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

"""Configuration management for Cadence."""

import asyncio
import copy
import os
import sys
import tempfile
from dataclasses import fields
from pathlib import Path
from typing import Any, Callable

import yaml
from loguru import logger

from core.engine import SearchMode
from core.settings import PlaybackSettings
from core.similarity import SimilarityThresholds


# =============================================================================
# DEFAULT SETTINGS SCHEMA
# =============================================================================
# These defaults are used when settings.yaml is missing or incomplete.
# Environment variables can override any setting (see _apply_env_overrides).
#
# General:
#   queue_display_size     - Tracks shown per page in /queue (1-50)
#   history_display_size   - Tracks shown per page in /history (1-50)
#   inactivity_timeout     - Minutes alone in VC before auto-disconnect (0 = never)
#   default_volume         - Volume for new sessions (1-100)
#   embed_color            - Accent color for embeds as hex integer
#
# Playback (playback.*):
#   history_size           - Finished tracks remembered per guild (1-500)
#   max_autoplay_tracks    - Consecutive autoplay tracks before a human must queue (0-500)
#   autoplay_enabled       - Autoplay on for new sessions
#   autoplay_queue_size    - Queue depth autoplay tops up to (1-25)
#   autoplay_near_limit_queue_size - Smaller depth once 80% of the cap is used (1-25)
#   autoplay_min_duration  - Shortest autoplay track in seconds (0 = no limit)
#   autoplay_max_duration  - Longest autoplay track in seconds (0 = no limit)
#   search_mode            - /play search: ytsearch, ytmsearch, scsearch
#   autoplay_search_mode   - Search used for related tracks
#   recovery_search_mode   - Search used to replace tracks that fail to stream
#   recovery_backoff_seconds - Pause before resuming a stalled stream (0.5-60)
#   skip_on_parser_error   - Skip tracks YouTube fails to parse
#
# Similarity (similarity.*):
#   title_threshold        - Title score needed without artist info (0-1)
#   title_threshold_with_artist - Title score needed when both artists are known (0-1)
#   artist_threshold       - Artist score for the artist-weighted match (0-1)
#   title_factor           - Title threshold multiplier for the artist-weighted match (0-1)
#   min_substring_length   - Titles longer than this match on containment
#   match_same_artist      - Treat any two tracks by the same artist as duplicates
#
# UI Settings (ui.*):
#   extended_auto_delete   - Seconds before auto-deleting pagination views (0 = never)
#   brief_auto_delete      - Seconds before auto-deleting simple responses (0 = never)
#
# Logging Settings (logging.*):
#   level                  - Log verbosity: "minimal", "verbose", or "debug"
# =============================================================================

DEFAULT_SETTINGS = {
    "queue_display_size": 10,
    "history_display_size": 10,
    "inactivity_timeout": 5,
    "default_volume": 50,
    "embed_color": 0x5865F2,
    "playback": {
        "history_size": 50,
        "max_autoplay_tracks": 50,
        "autoplay_enabled": True,
        "autoplay_queue_size": 8,
        "autoplay_near_limit_queue_size": 3,
        "autoplay_min_duration": 30,
        "autoplay_max_duration": 900,
        "search_mode": "ytmsearch",
        "autoplay_search_mode": "ytsearch",
        "recovery_search_mode": "ytsearch",
        "recovery_backoff_seconds": 5.0,
        "skip_on_parser_error": True,
    },
    "similarity": {
        "title_threshold": 0.8,
        "title_threshold_with_artist": 0.6,
        "artist_threshold": 0.8,
        "title_factor": 0.8,
        "min_substring_length": 10,
        "match_same_artist": True,
    },
    # UI behavior
    "ui": {
        "extended_auto_delete": 90,  # seconds, 0 to disable
        "brief_auto_delete": 10,  # seconds, 0 to disable
    },
    # Logging (LOG_LEVEL env var overrides this)
    "logging": {
        "level": "verbose",  # minimal, verbose, debug
    },
}

# =============================================================================
# DEFAULT MESSAGES SCHEMA
# =============================================================================
# Bot responses with per-message enable/disable control.
# Each message has two fields:
#   text    - The message template (supports {variables} for formatting)
#   enabled - Whether to show this message (True) or acknowledge silently (False)
#
# The respond() helper in ResponseMixin checks the enabled flag before sending.
# Disabled messages still acknowledge the interaction (defer + delete) so
# Discord doesn't show "interaction failed".
# =============================================================================

DEFAULT_MESSAGES = {
    # Voice errors
    "not_in_vc": {"text": "join a voice channel first", "enabled": True},
    "wrong_vc": {"text": "i'm playing in {channel}", "enabled": True},
    "voice_error": {"text": "voice connection hiccup, try again", "enabled": True},
    "need_vc_permissions": {"text": "can't connect or speak in that channel", "enabled": True},
    "failed_join_vc": {"text": "couldn't join your channel", "enabled": True},

    # Playback
    "nothing_playing": {"text": "nothing is playing", "enabled": True},
    "now_playing": {"text": "now playing: **{title}**", "enabled": False},
    "paused": {"text": "paused", "enabled": False},
    "resumed": {"text": "resumed", "enabled": False},
    "already_paused": {"text": "already paused", "enabled": True},
    "not_paused": {"text": "not paused", "enabled": True},
    "skipped": {"text": "skipped **{title}**", "enabled": True},
    "stopped": {"text": "stopped and left the channel", "enabled": False},

    # Search / queueing
    "searching": {"text": "searching...", "enabled": False},
    "song_not_found": {"text": "no results for that", "enabled": True},
    "search_failed": {"text": "search failed, try again", "enabled": True},
    "queued": {"text": "queued **{title}** at #{position}", "enabled": True},
    "queued_many": {"text": "queued {count} tracks", "enabled": True},
    "queued_next": {"text": "**{title}** plays next", "enabled": True},
    "nothing_added": {"text": "already queued or recently played", "enabled": True},
    "track_play_error": {"text": "couldn't start playback, try again", "enabled": True},

    # Queue
    "queue_empty": {"text": "queue is empty", "enabled": True},
    "queue_cleared": {"text": "cleared {count} tracks", "enabled": True},
    "removed": {"text": "removed **{title}**", "enabled": True},
    "moved": {"text": "moved **{title}** to #{position}", "enabled": True},
    "shuffled": {"text": "shuffled {count} tracks", "enabled": True},
    "invalid_position": {"text": "no track at position {position}", "enabled": True},

    # Settings
    "volume_set": {"text": "volume set to {level}%", "enabled": True},
    "repeat_set": {"text": "repeat: {mode}", "enabled": True},
    "autoplay_on": {"text": "autoplay on", "enabled": True},
    "autoplay_off": {"text": "autoplay off", "enabled": True},

    # History
    "history_empty": {"text": "nothing played yet", "enabled": True},

    # Errors
    "error_generic": {"text": "something broke, try again", "enabled": True},
    "music_unavailable": {"text": "music system is down", "enabled": True},
}

_LOG_LEVELS = ("minimal", "verbose", "debug")
_SEARCH_MODES = tuple(m.value for m in SearchMode if m is not SearchMode.URL)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def deep_merge(user: dict, defaults: dict) -> dict:
    """Merge user config with defaults, preserving nested structure.

    User values override defaults. For nested dicts, merges recursively.
    Unknown keys (not in defaults) are logged as warnings and ignored.

    Args:
        user: User-provided config from YAML file
        defaults: Default values to use for missing keys

    Returns:
        Merged config dict with all default keys present
    """
    result = copy.deepcopy(defaults)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(value, result[key])
        elif key in defaults:
            result[key] = value
        else:
            logger.warning(f"unknown config key: {key}")
    return result


def load_yaml(path: Path, defaults: dict) -> dict:
    """Load YAML file merged over defaults.

    A missing file or invalid YAML yields a copy of the defaults; parse
    errors are logged.
    """
    if not path.exists():
        return copy.deepcopy(defaults)

    try:
        with open(path, 'r', encoding='utf-8') as f:
            user = yaml.safe_load(f) or {}

        if not isinstance(user, dict):
            logger.warning(f"{path.name} invalid, using defaults")
            return copy.deepcopy(defaults)

        return deep_merge(user, defaults)

    except yaml.YAMLError:
        logger.opt(exception=True).error(f"failed to parse {path.name}")
        return copy.deepcopy(defaults)


def save_yaml(path: Path, data: dict, header: str = "") -> None:
    """Save YAML atomically (temp file then rename), with optional header comment."""
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix='.tmp')
        try:
            f = os.fdopen(temp_fd, 'w', encoding='utf-8')
        except Exception:
            os.close(temp_fd)
            raise
        with f:
            if header:
                f.write(header)
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        Path(temp_path).replace(path)
    except Exception:
        if temp_path:
            Path(temp_path).unlink(missing_ok=True)
        raise


class ConfigManager:
    """Manages bot configuration from settings.yaml and messages.yaml.

    Loads configuration at startup with this priority (highest wins):
    1. DEFAULT_SETTINGS / DEFAULT_MESSAGES (built-in defaults)
    2. settings.yaml / messages.yaml (user customization)
    3. Environment variables (Docker/deployment override)

    Access patterns:
        config_manager.get("key")           # Get setting value
        config_manager.section("playback")  # Get nested section (always a dict)
        config_manager.msg("key", **vars)   # Get formatted message
        config_manager.is_enabled("key")    # Check if message should show
        config_manager.playback_settings()  # Immutable settings for the core

    Attributes:
        config_path: Directory containing settings.yaml and messages.yaml
        settings: Loaded settings dict (after validation)
        messages: Loaded messages dict
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self.settings: dict = copy.deepcopy(DEFAULT_SETTINGS)
        self.messages: dict = copy.deepcopy(DEFAULT_MESSAGES)

    async def load(self) -> None:
        """Load settings and messages from YAML, apply env overrides, validate.

        Generates missing config files with default values and header comments.
        """
        settings_path = self.config_path / "settings.yaml"
        self.settings = await asyncio.to_thread(load_yaml, settings_path, DEFAULT_SETTINGS)

        if not settings_path.exists():
            header = "# Cadence Settings\n# Edit these values to customize behavior\n\n"
            await asyncio.to_thread(save_yaml, settings_path, DEFAULT_SETTINGS, header)
            logger.debug(f"generated {settings_path.name}")

        messages_path = self.config_path / "messages.yaml"
        self.messages = await asyncio.to_thread(load_yaml, messages_path, DEFAULT_MESSAGES)

        if not messages_path.exists():
            header = "# Cadence Responses\n# Set enabled: false to acknowledge silently\n\n"
            await asyncio.to_thread(save_yaml, messages_path, DEFAULT_MESSAGES, header)
            logger.debug(f"generated {messages_path.name}")

        self._apply_env_overrides()
        self._validate_settings()

        logger.debug("config loaded")

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @staticmethod
    def _clamp(target: dict, defaults: dict, key: str, lo, hi, cast: Callable, label: str) -> None:
        value = target.get(key)
        try:
            if isinstance(value, bool):
                raise TypeError("bool is not a number")
            v = cast(value)
        except (ValueError, TypeError):
            logger.warning(f"{label}={value!r} invalid, using default")
            target[key] = defaults[key]
            return
        clamped = max(lo, v) if hi is None else max(lo, min(hi, v))
        if clamped != v:
            range_str = f"{lo}+" if hi is None else f"{lo}-{hi}"
            logger.warning(f"{label}={v} out of range, clamped to {clamped} (valid: {range_str})")
        target[key] = clamped

    def _validate_settings(self) -> None:
        """Validate and clamp settings after loading from all sources.

        1. Null-restore: YAML "key:" with no value becomes None; defaults come back.
        2. Broken sections (scalar where a mapping belongs) are reset.
        3. Ranged numbers are clamped, unparseable ones reset to default.
        4. Enumerations (search modes, log level) fall back to default when unknown.
        5. embed_color accepts "5865F2", "0x5865F2", "#5865F2".
        """
        for key in list(self.settings):
            if self.settings[key] is None and key in DEFAULT_SETTINGS:
                self.settings[key] = copy.deepcopy(DEFAULT_SETTINGS[key])
        for section, defaults in DEFAULT_SETTINGS.items():
            if not isinstance(defaults, dict):
                continue
            sect = self.settings.get(section)
            if not isinstance(sect, dict):
                logger.warning(f"{section} section invalid, using defaults")
                self.settings[section] = copy.deepcopy(defaults)
                continue
            for key in list(sect):
                if sect[key] is None and key in defaults:
                    sect[key] = defaults[key]

        top_level = {
            "queue_display_size": (1, 50),
            "history_display_size": (1, 50),
            "default_volume": (1, 100),
            "inactivity_timeout": (0, None),
        }
        for key, (lo, hi) in top_level.items():
            self._clamp(self.settings, DEFAULT_SETTINGS, key, lo, hi, int, key)

        playback = self.settings["playback"]
        playback_defaults = DEFAULT_SETTINGS["playback"]
        playback_ranges = {
            "history_size": (1, 500, int),
            "max_autoplay_tracks": (0, 500, int),
            "autoplay_queue_size": (1, 25, int),
            "autoplay_near_limit_queue_size": (1, 25, int),
            "autoplay_min_duration": (0, None, int),
            "autoplay_max_duration": (0, None, int),
            "recovery_backoff_seconds": (0.5, 60.0, float),
        }
        for key, (lo, hi, cast) in playback_ranges.items():
            self._clamp(playback, playback_defaults, key, lo, hi, cast, f"playback.{key}")

        for key in ("search_mode", "autoplay_search_mode", "recovery_search_mode"):
            if playback.get(key) not in _SEARCH_MODES:
                logger.warning(f"playback.{key}={playback.get(key)!r} invalid, using default")
                playback[key] = playback_defaults[key]

        for key in ("autoplay_enabled", "skip_on_parser_error"):
            if not isinstance(playback.get(key), bool):
                logger.warning(f"playback.{key}={playback.get(key)!r} invalid, using default")
                playback[key] = playback_defaults[key]

        similarity = self.settings["similarity"]
        similarity_defaults = DEFAULT_SETTINGS["similarity"]
        for key in ("title_threshold", "title_threshold_with_artist", "artist_threshold", "title_factor"):
            self._clamp(similarity, similarity_defaults, key, 0.0, 1.0, float, f"similarity.{key}")
        self._clamp(
            similarity, similarity_defaults, "min_substring_length", 0, None, int,
            "similarity.min_substring_length",
        )
        if not isinstance(similarity.get("match_same_artist"), bool):
            similarity["match_same_artist"] = similarity_defaults["match_same_artist"]

        ui = self.settings["ui"]
        for key in ("extended_auto_delete", "brief_auto_delete"):
            self._clamp(ui, DEFAULT_SETTINGS["ui"], key, 0, None, int, f"ui.{key}")

        level = str(self.settings["logging"].get("level", "")).lower()
        if level not in _LOG_LEVELS:
            logger.warning(f"logging.level={level!r} invalid, using default")
            level = DEFAULT_SETTINGS["logging"]["level"]
        self.settings["logging"]["level"] = level

        color = self.settings.get("embed_color")
        if not isinstance(color, int) or isinstance(color, bool):
            try:
                color_str = str(color).strip().lstrip("#").removeprefix("0x").removeprefix("0X")
                self.settings["embed_color"] = int(color_str, 16)
            except (ValueError, TypeError):
                logger.warning(f"embed_color={color!r} invalid, using default")
                self.settings["embed_color"] = DEFAULT_SETTINGS["embed_color"]

    def _apply_env_overrides(self) -> None:
        """Override settings with environment variables.

        The env_map dict maps ENV_VAR_NAME -> (setting_key, converter), with
        dot notation for nested keys. Range checks happen afterwards in
        _validate_settings. Invalid values are logged and ignored.
        """
        env_map: dict[str, tuple[str, Callable[[str], Any]]] = {
            "QUEUE_DISPLAY_SIZE": ("queue_display_size", int),
            "HISTORY_DISPLAY_SIZE": ("history_display_size", int),
            "INACTIVITY_TIMEOUT": ("inactivity_timeout", int),
            "DEFAULT_VOLUME": ("default_volume", int),
            "EMBED_COLOR": ("embed_color", str),
            "LOG_LEVEL": ("logging.level", str),
            # Playback
            "HISTORY_SIZE": ("playback.history_size", int),
            "MAX_AUTOPLAY_TRACKS": ("playback.max_autoplay_tracks", int),
            "AUTOPLAY_ENABLED": ("playback.autoplay_enabled", _as_bool),
            "AUTOPLAY_QUEUE_SIZE": ("playback.autoplay_queue_size", int),
            "AUTOPLAY_MIN_DURATION": ("playback.autoplay_min_duration", int),
            "AUTOPLAY_MAX_DURATION": ("playback.autoplay_max_duration", int),
            "SEARCH_MODE": ("playback.search_mode", str),
            "AUTOPLAY_SEARCH_MODE": ("playback.autoplay_search_mode", str),
            "RECOVERY_SEARCH_MODE": ("playback.recovery_search_mode", str),
            "RECOVERY_BACKOFF_SECONDS": ("playback.recovery_backoff_seconds", float),
            "SKIP_ON_PARSER_ERROR": ("playback.skip_on_parser_error", _as_bool),
            # Similarity
            "SIMILARITY_TITLE_THRESHOLD": ("similarity.title_threshold", float),
            "SIMILARITY_MATCH_SAME_ARTIST": ("similarity.match_same_artist", _as_bool),
            # UI timeouts
            "EXTENDED_AUTO_DELETE": ("ui.extended_auto_delete", int),
            "BRIEF_AUTO_DELETE": ("ui.brief_auto_delete", int),
        }

        for env_key, (setting_key, converter) in env_map.items():
            if value := os.getenv(env_key):
                try:
                    converted = converter(value)
                    if "." in setting_key:
                        parts = setting_key.split(".")
                        target = self.settings
                        for part in parts[:-1]:
                            target = target.setdefault(part, {})
                            if not isinstance(target, dict):
                                logger.warning(f"invalid config structure for {setting_key}")
                                break
                        else:
                            target[parts[-1]] = converted
                    else:
                        self.settings[setting_key] = converted
                    logger.debug(f"{env_key} overrides {setting_key}")
                except (ValueError, TypeError) as e:
                    logger.warning(f"invalid env var {env_key}: {e}")

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def get(self, key: str, default=None) -> Any:
        """Get a top-level setting value, or ``default`` if missing."""
        return self.settings.get(key, default)

    def section(self, key: str) -> dict:
        """Get a nested settings section. Always returns a dict."""
        value = self.settings.get(key)
        return value if isinstance(value, dict) else {}

    def msg(self, key: str, **kwargs) -> str:
        """Get formatted message text from messages.yaml.

        Returns the key itself if the message is unknown.
        """
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        template = entry.get("text", key) if isinstance(entry, dict) else str(entry)
        try:
            return template.format(**kwargs)
        except (KeyError, IndexError):
            return template

    def is_enabled(self, key: str) -> bool:
        """Check if a message should be shown (False means silent acknowledgment)."""
        entry = self.messages.get(key, DEFAULT_MESSAGES.get(key, {}))
        return entry.get("enabled", True) if isinstance(entry, dict) else True

    def playback_settings(self) -> PlaybackSettings:
        """Build the immutable settings object handed to the playback core."""
        playback = self.section("playback")
        similarity = self.section("similarity")
        threshold_names = {f.name for f in fields(SimilarityThresholds)}
        return PlaybackSettings(
            history_size=playback["history_size"],
            max_autoplay_tracks=playback["max_autoplay_tracks"],
            default_volume=self.settings["default_volume"],
            autoplay_enabled=playback["autoplay_enabled"],
            autoplay_queue_size=playback["autoplay_queue_size"],
            autoplay_near_limit_queue_size=playback["autoplay_near_limit_queue_size"],
            autoplay_min_duration=playback["autoplay_min_duration"],
            autoplay_max_duration=playback["autoplay_max_duration"],
            search_mode=SearchMode(playback["search_mode"]),
            autoplay_search_mode=SearchMode(playback["autoplay_search_mode"]),
            recovery_search_mode=SearchMode(playback["recovery_search_mode"]),
            recovery_backoff_seconds=playback["recovery_backoff_seconds"],
            skip_on_parser_error=playback["skip_on_parser_error"],
            similarity=SimilarityThresholds(
                **{k: v for k, v in similarity.items() if k in threshold_names}
            ),
        )


async def validate_configuration() -> None:
    """Pre-flight check before the bot starts, exit on failure.

    Checks performed:
    - DISCORD_TOKEN is set and has three dot-separated sections
    - Config directory exists (created if missing)
    - Lavalink server is reachable and responding

    On failure: logs all errors and calls sys.exit(1).
    On success: logs the Lavalink version and returns normally.
    """
    import aiohttp

    errors = []

    token = os.getenv("DISCORD_TOKEN")
    if not token:
        errors.append("DISCORD_TOKEN not set - add it to .env or the container environment")
    else:
        parts = token.strip().split(".")
        if len(parts) != 3 or any(not part for part in parts):
            errors.append(
                "DISCORD_TOKEN format appears invalid.\n"
                "Get a fresh token from: https://discord.com/developers/applications"
            )

    if not os.getenv("GUILD_ID"):
        logger.warning("GUILD_ID not set - commands may take up to 1 hour to show up")

    _default_config = Path(__file__).parent.parent / "config"
    config_path = Path(os.getenv("CONFIG_PATH") or str(_default_config))
    if not config_path.exists():
        try:
            config_path.mkdir(parents=True)
            logger.warning(f"created missing config directory: {config_path}")
        except OSError as e:
            errors.append(f"cannot create config directory {config_path}: {e}")

    lavalink_host = os.getenv("LAVALINK_HOST", "127.0.0.1")
    lavalink_port = os.getenv("LAVALINK_PORT", "2333")
    lavalink_password = os.getenv("LAVALINK_PASSWORD", "youshallnotpass")

    try:
        async with aiohttp.ClientSession() as session:
            url = f"http://{lavalink_host}:{lavalink_port}/version"
            headers = {"Authorization": lavalink_password}
            async with session.get(url, headers=headers, timeout=aiohttp.ClientTimeout(total=30)) as resp:
                if resp.status != 200:
                    errors.append(f"lavalink not responding at {url}")
                else:
                    version = await resp.text()
                    logger.log("NOTICE", f"lavalink version: {version}")
    except Exception as e:
        errors.append(f"cannot connect to lavalink at {lavalink_host}:{lavalink_port}: {e}")

    if errors:
        for error in errors:
            logger.error(error)
        sys.exit(1)
