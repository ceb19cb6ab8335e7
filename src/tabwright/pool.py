"""
Shared browser process and tab pool.

Provides:
- Lazy, idempotent browser launch guarded by a creation lock
- A pool of reusable tabs handed to one job at a time
- The single foreground lock shared by every page session
- Async-first design with proper cleanup
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable

import structlog

from tabwright.config import BrowserConfig, load_browser_config

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page, Playwright

logger = structlog.get_logger(__name__)


class BrowserPoolError(Exception):
    """Base exception for browser pool errors."""


class BrowserLaunchError(BrowserPoolError):
    """Raised when the browser process cannot be started."""


@dataclass
class BrowserHandle:
    """
    The living browser process.

    Wraps a persistent Playwright context, which owns the process and its tabs.
    """

    context: BrowserContext
    """The underlying browser context."""

    playwright: Playwright | None = None
    """Driver connection to stop after the context closes, if we started it."""

    launched_at: float = field(default_factory=time.time)
    """Unix timestamp when the browser was launched."""

    @property
    def tabs(self) -> list[Page]:
        """Tabs currently open in the browser."""
        return list(self.context.pages)

    async def new_tab(self) -> Page:
        """Open a new tab."""
        return await self.context.new_page()

    async def close(self) -> None:
        """Close every tab and the browser process."""
        try:
            await self.context.close()
        finally:
            if self.playwright is not None:
                await self.playwright.stop()


Launcher = Callable[[BrowserConfig], Awaitable[BrowserHandle]]


async def launch_playwright(config: BrowserConfig) -> BrowserHandle:
    """
    Launch Chromium through Playwright with the fixed switch set.

    A persistent context is used so the launch yields an initial tab and an
    optional profile directory is honored; an empty directory means a
    throwaway profile.
    """
    from playwright.async_api import async_playwright

    playwright = await async_playwright().start()
    try:
        context = await playwright.chromium.launch_persistent_context(
            config.profile_path or "",
            headless=config.headless,
            args=config.launch_args(),
            viewport=config.viewport,
            chromium_sandbox=False,
            timeout=config.launch_timeout_ms,
        )
    except BaseException:
        await playwright.stop()
        raise
    return BrowserHandle(context=context, playwright=playwright)


class BrowserPool:
    """
    Owner of the single browser process and its reusable tabs.

    Features:
    - Browser is not launched until a tab is first needed
    - Concurrent first callers converge on a single launch
    - Released tabs are reused rather than closed
    - Reusable after ``shutdown()``; the next acquisition relaunches

    Usage:
        async with BrowserPool(config) as pool:
            async with pool.acquire() as tab:
                await tab.goto("https://example.com")
    """

    def __init__(
        self,
        config: BrowserConfig | None = None,
        launcher: Launcher | None = None,
    ) -> None:
        """
        Initialize browser pool.

        Args:
            config: Browser configuration (loads from env if not provided)
            launcher: Coroutine that starts the browser; defaults to Playwright
        """
        self._config = config or load_browser_config()
        self._launcher = launcher or launch_playwright

        self._browser: BrowserHandle | None = None
        self._available: list[Page] = []
        self._owned: set[Page] = set()

        self.browser_lock = asyncio.Lock()
        """Guards the launch critical section only."""

        self.foreground_lock = asyncio.Lock()
        """Held by whichever page session currently owns the visible window."""

        self.active_tab: Page | None = None
        """The tab last brought to front, if known."""

        self._log = logger.bind(component="browser_pool")

        # Statistics
        self._stats = {
            "launches": 0,
            "tabs_created": 0,
            "acquisitions": 0,
            "releases": 0,
        }

    @property
    def config(self) -> BrowserConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """True if the browser process currently exists."""
        return self._browser is not None

    @property
    def available_count(self) -> int:
        """Get number of idle tabs."""
        return len(self._available)

    @property
    def statistics(self) -> dict[str, Any]:
        """Get pool statistics."""
        return {
            **self._stats,
            "available": self.available_count,
            "running": self.is_running,
        }

    async def ensure_browser(self) -> BrowserHandle:
        """
        Return the browser, launching it if it does not exist yet.

        Once the browser exists this returns without touching the lock.

        Raises:
            BrowserLaunchError: If the launch fails. The lock is released and a
                later call retries the launch.
        """
        if self._browser is not None:
            return self._browser

        async with self.browser_lock:
            if self._browser is not None:
                # Another caller launched while we waited
                return self._browser

            self._log.info(
                "Launching browser",
                headless=self._config.headless,
                width=self._config.width,
                height=self._config.height,
                profile=self._config.profile_path,
            )
            try:
                browser = await self._launcher(self._config)
            except Exception as e:
                self._log.error("Browser launch failed", error=str(e))
                raise BrowserLaunchError(
                    f"Failed to launch browser (profile={self._config.profile_path or 'temporary'}): {e}"
                ) from e

            # Tabs the launch opened are the first ones available for reuse
            self._available.extend(browser.tabs)
            self._owned.update(browser.tabs)
            self._browser = browser
            self._stats["launches"] += 1

            self._log.info("Browser launched", initial_tabs=len(self._available))
            return browser

    async def acquire_tab(self) -> Page:
        """
        Get a tab for exclusive use, reusing an idle one if possible.

        Returns:
            A tab owned by the caller until passed to ``release_tab()``
        """
        self._stats["acquisitions"] += 1

        # Which tab is frontmost is unknown once the pool changes
        self.active_tab = None

        if self._available:
            return self._available.pop()

        browser = await self.ensure_browser()
        if self._available:
            # The launch may have produced a tab
            return self._available.pop()

        tab = await browser.new_tab()
        self._owned.add(tab)
        self._stats["tabs_created"] += 1
        self._log.debug("Created tab", tabs_created=self._stats["tabs_created"])
        return tab

    def release_tab(self, tab: Page) -> None:
        """
        Return a tab to the pool. Always safe to call from cleanup code.

        Tabs from a browser that has since been shut down are dropped.
        """
        self._stats["releases"] += 1
        if tab not in self._owned:
            self._log.debug("Dropped tab from closed browser")
            return
        self._available.append(tab)

    def mark_active(self, tab: Page) -> None:
        """Record that ``tab`` was brought to front."""
        self.active_tab = tab

    @contextlib.asynccontextmanager
    async def acquire(self) -> AsyncIterator[Page]:
        """
        Acquire a tab for the duration of the block.

        Usage:
            async with pool.acquire() as tab:
                await tab.goto("https://example.com")
        """
        tab = await self.acquire_tab()
        try:
            yield tab
        finally:
            self.release_tab(tab)

    async def shutdown(self) -> None:
        """
        Close the browser if it was launched and forget all tabs.

        The pool can be reused afterwards.
        """
        async with self.browser_lock:
            browser = self._browser
            self._browser = None
            self._available.clear()
            self._owned.clear()
            self.active_tab = None

            if browser is not None:
                self._log.info("Closing browser", stats=self.statistics)
                await browser.close()

    async def __aenter__(self) -> BrowserPool:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.shutdown()
