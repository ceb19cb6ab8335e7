"""
Configuration models for the browser and the job runner.

Provides typed configuration for:
- Browser launch (window size, headless mode, profile directory)
- Activity logging
- Job runner concurrency limits
- Environment variable support
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

import structlog

logger = structlog.get_logger(__name__)

MIN_WIDTH = 200
MIN_HEIGHT = 300


def resolve_path(path: str) -> str:
    """Resolve a leading ``~`` to the user's home directory."""
    if path and path[0] == "~":
        return str(Path.home() / path[1:].lstrip("/\\"))
    return path


@dataclass(slots=True)
class BrowserConfig:
    """
    Configuration for the shared browser process.

    Supports loading from environment variables with sensible defaults.
    """

    headless: bool = True
    """Run without a visible window."""

    width: int = 1000
    """Outer window width in pixels."""

    height: int = 1000
    """Outer window height in pixels."""

    profile_path: str | None = None
    """Chrome profile directory; ``None`` uses a throwaway profile."""

    log_activity: bool = False
    """Log every completed status message, not just publish it."""

    launch_timeout_ms: float = 30000
    """Maximum time to wait for the browser process to start."""

    extra_args: tuple[str, ...] = ()
    """Additional command-line switches appended to the fixed set."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.profile_path:
            self.profile_path = resolve_path(self.profile_path)
        self._validate()

    def _validate(self) -> None:
        if self.width < MIN_WIDTH:
            raise ValueError(f"width must be at least {MIN_WIDTH}")
        if self.height < MIN_HEIGHT:
            raise ValueError(f"height must be at least {MIN_HEIGHT}")
        if self.launch_timeout_ms <= 0:
            raise ValueError("launch_timeout_ms must be positive")

    @property
    def viewport(self) -> dict[str, int]:
        """Content viewport, leaving room for scrollbars and browser chrome when headed."""
        if self.headless:
            return {"width": self.width, "height": self.height}
        return {"width": self.width - 20, "height": self.height - 200}

    def launch_args(self) -> list[str]:
        """Command-line switches for the browser process."""
        args = [
            f"--window-size={self.width},{self.height}",
            "--hide-crash-restore-bubble",
            "--no-default-browser-check",
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-sync",
            "--mute-audio",
            "--disable-extensions",
            "--disable-features=Translate",
            "--disable-dev-shm-usage",
        ]
        if self.headless:
            args.append("--disable-gl-drawing-for-tests")
        args.extend(self.extra_args)
        return args

    def with_overrides(
        self,
        headless: bool | None = None,
        log_activity: bool | None = None,
    ) -> Self:
        """
        Create a new config with specified overrides.

        Returns a new instance - does not mutate the original.
        """
        return BrowserConfig(
            headless=self.headless if headless is None else headless,
            width=self.width,
            height=self.height,
            profile_path=self.profile_path,
            log_activity=self.log_activity if log_activity is None else log_activity,
            launch_timeout_ms=self.launch_timeout_ms,
            extra_args=self.extra_args,
        )


@dataclass(slots=True)
class RunnerConfig:
    """Configuration for concurrent job execution."""

    max_parallel_jobs: int = 5
    """Maximum number of jobs running concurrently."""

    tag_limits: dict[str, int] = field(default_factory=dict)
    """Optional per-tag concurrency caps, e.g. ``{"side": 2}``."""

    show_status: bool = False
    """Log every status change at info level instead of debug."""

    def __post_init__(self) -> None:
        if self.max_parallel_jobs < 1:
            raise ValueError("max_parallel_jobs must be at least 1")
        for tag, limit in self.tag_limits.items():
            if limit < 1:
                raise ValueError(f"tag limit for {tag!r} must be at least 1")


def _env_reader(env_prefix: str):
    """Typed getters over prefixed environment variables."""

    def get_raw(key: str) -> str | None:
        return os.environ.get(f"{env_prefix}{key}")

    def get_int(key: str, default: int, minimum: int | None = None) -> int:
        value = get_raw(key)
        if value is None:
            return default
        try:
            parsed = int(value)
        except ValueError:
            logger.warning(
                "Invalid integer value for config",
                key=key,
                value=value,
                using_default=default,
            )
            return default
        if minimum is not None and parsed < minimum:
            logger.warning(
                "Config value below minimum",
                key=key,
                value=parsed,
                minimum=minimum,
                using_default=default,
            )
            return default
        return parsed

    def get_float(key: str, default: float, minimum: float | None = None) -> float:
        value = get_raw(key)
        if value is None:
            return default
        try:
            parsed = float(value)
        except ValueError:
            logger.warning(
                "Invalid float value for config",
                key=key,
                value=value,
                using_default=default,
            )
            return default
        if minimum is not None and parsed < minimum:
            logger.warning(
                "Config value below minimum",
                key=key,
                value=parsed,
                minimum=minimum,
                using_default=default,
            )
            return default
        return parsed

    def get_bool(key: str, default: bool) -> bool:
        value = get_raw(key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    return get_raw, get_int, get_float, get_bool


def _parse_tag_limits(raw: str) -> dict[str, int]:
    """Parse ``tag=n,tag2=m`` into a mapping, raising ValueError on bad input."""
    limits: dict[str, int] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        tag, sep, value = item.partition("=")
        if not sep or not tag.strip():
            raise ValueError(f"malformed tag limit: {item!r}")
        limit = int(value)
        if limit < 1:
            raise ValueError(f"tag limit for {tag.strip()!r} must be at least 1")
        limits[tag.strip()] = limit
    return limits


def load_browser_config(
    env_prefix: str = "TABWRIGHT_",
    defaults: BrowserConfig | None = None,
) -> BrowserConfig:
    """
    Load browser configuration from environment variables.

    Environment variables (all optional):
    - TABWRIGHT_HEADLESS: Run without a visible window
    - TABWRIGHT_WIDTH: Window width in pixels
    - TABWRIGHT_HEIGHT: Window height in pixels
    - TABWRIGHT_PROFILE_PATH: Chrome profile directory (``~`` allowed)
    - TABWRIGHT_LOG_ACTIVITY: Log completed status messages
    - TABWRIGHT_LAUNCH_TIMEOUT_MS: Browser launch timeout

    Args:
        env_prefix: Prefix for environment variables
        defaults: Default configuration to use as base

    Returns:
        Loaded and validated BrowserConfig
    """
    base = defaults or BrowserConfig()
    get_raw, get_int, get_float, get_bool = _env_reader(env_prefix)

    config = BrowserConfig(
        headless=get_bool("HEADLESS", base.headless),
        width=get_int("WIDTH", base.width, minimum=MIN_WIDTH),
        height=get_int("HEIGHT", base.height, minimum=MIN_HEIGHT),
        profile_path=get_raw("PROFILE_PATH") or base.profile_path,
        log_activity=get_bool("LOG_ACTIVITY", base.log_activity),
        launch_timeout_ms=get_float("LAUNCH_TIMEOUT_MS", base.launch_timeout_ms, minimum=1),
        extra_args=base.extra_args,
    )

    logger.info(
        "Loaded browser config",
        headless=config.headless,
        width=config.width,
        height=config.height,
        profile=config.profile_path,
    )

    return config


def load_runner_config(
    env_prefix: str = "TABWRIGHT_",
    defaults: RunnerConfig | None = None,
) -> RunnerConfig:
    """
    Load job runner configuration from environment variables.

    Environment variables (all optional):
    - TABWRIGHT_MAX_PARALLEL: Maximum concurrent jobs
    - TABWRIGHT_TAG_LIMITS: Per-tag caps as ``tag=n,tag2=m``
    - TABWRIGHT_SHOW_STATUS: Log status changes at info level
    """
    base = defaults or RunnerConfig()
    get_raw, get_int, _, get_bool = _env_reader(env_prefix)

    tag_limits = dict(base.tag_limits)
    raw_limits = get_raw("TAG_LIMITS")
    if raw_limits is not None:
        try:
            tag_limits = _parse_tag_limits(raw_limits)
        except ValueError:
            logger.warning(
                "Invalid tag limits for config",
                key="TAG_LIMITS",
                value=raw_limits,
                using_default=tag_limits,
            )

    return RunnerConfig(
        max_parallel_jobs=get_int("MAX_PARALLEL", base.max_parallel_jobs, minimum=1),
        tag_limits=tag_limits,
        show_status=get_bool("SHOW_STATUS", base.show_status),
    )
