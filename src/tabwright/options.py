"""
Per-call option models for page sessions and jobs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Literal

DEFAULT_NAVIGATION_TIMEOUT_MS = 20000

LoadState = Literal["load", "domcontentloaded", "networkidle", "commit"]


class WaitIn(StrEnum):
    """Whether a wait happens holding the foreground token or not."""

    FOREGROUND = "foreground"
    """Keep (or take) exclusive control of the visible window while waiting."""

    BACKGROUND = "background"
    """Give up the visible window so other jobs can interact meanwhile."""


@dataclass(slots=True)
class GoOptions:
    """Options for navigation."""

    timeout_ms: float = DEFAULT_NAVIGATION_TIMEOUT_MS
    """Maximum time to wait for the page to load."""

    wait_until: LoadState = "load"
    """Lifecycle event that counts as loaded."""

    wait_after_ms: float = 0
    """Additional time to wait, in the background, after the page loaded."""


@dataclass(slots=True)
class SelectorOptions:
    """Options for selector queries."""

    timeout_ms: float = 0
    """Maximum time to wait for a match; zero means do not wait."""

    wait_in: WaitIn = WaitIn.FOREGROUND
    """Whether to wait in the foreground or background."""

    visible: bool = False
    """Only accept truly visible elements."""


@dataclass(slots=True)
class ClickOptions:
    """Options for simulated clicks."""

    scroll_into_view: bool = True
    """Scroll the element toward the viewport center before clicking."""

    wait_after: float = 100
    """Milliseconds to wait after the click; zero skips the wait."""

    wait_in: WaitIn = WaitIn.FOREGROUND
    """Whether to wait in the foreground or background after clicking."""


@dataclass(slots=True)
class TypeOptions:
    """Options for simulated typing."""

    scroll_into_view: bool = True
    """Scroll the element toward the viewport center before typing."""

    slow_typing: bool = True
    """Pause between keystrokes as a person would."""

    wait_after: float = 100
    """Milliseconds to wait after typing; zero skips the wait."""

    wait_in: WaitIn = WaitIn.FOREGROUND
    """Whether to wait in the foreground or background after typing."""

    multi_lined_shift_return: bool = False
    """Separate lines with Shift+Enter instead of a plain Enter."""

    press_return_at_end: bool = False
    """Send a final Enter after the text."""


@dataclass(slots=True)
class JobOptions:
    """Registration options for a job."""

    title: str
    """Human-readable job name, used in status and logs."""

    tags: tuple[str, ...] = ()
    """Tags used for grouping and per-tag concurrency caps."""


@dataclass(slots=True)
class PageJobOptions(JobOptions):
    """Registration options for a job that runs against a browser tab."""

    url: str | None = None
    """If given, navigate here in the background before the job body runs."""

    go_options: GoOptions = field(default_factory=GoOptions)
    """Navigation options for ``url``."""
