"""
Page session: one job's view of one browser tab.

A session coordinates with every other session through the pool's foreground
lock. Interaction (clicks, typing, geometry reads used for targeting) runs in
the foreground, where exactly one session owns the visible window. Slow waits
can run in the background so other sessions can interleave their own
interaction meanwhile.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence, TypeVar

import structlog
from playwright.async_api import Error as PlaywrightError

from tabwright import visibility
from tabwright.options import (
    ClickOptions,
    GoOptions,
    JobOptions,
    PageJobOptions,
    SelectorOptions,
    TypeOptions,
    WaitIn,
)
from tabwright.status import StatusSink, StatusStack
from tabwright.visibility import ElementRect, Point

if TYPE_CHECKING:
    from playwright.async_api import ElementHandle, Page

    from tabwright.pool import BrowserPool
    from tabwright.runner import Job, JobFunction, JobRunner

logger = structlog.get_logger(__name__)

T = TypeVar("T")

POLL_INTERVAL_MS = 250
"""Pause between attempts when polling for text matches."""

SCROLL_SETTLE_MS = 250
"""Time for layout to settle after a scroll."""

MAX_SCROLL_ATTEMPTS = 20
"""Give up re-centering an element whose position never stabilizes."""

FOCUS_SETTLE_MS = 200
MOUSE_MOVE_STEPS = 5
CLICK_PRESS_DELAY_MS = 200
TYPE_KEY_DELAY_MS = 5

_TEXT_CONTENT_JS = "(el) => el.textContent"

_MATCHING_PARENT_JS = """
(el, selector) => {
    let parent = el.parentElement;
    while (parent) {
        if (parent.matches(selector)) return parent;
        parent = parent.parentElement;
    }
    return null;
}
"""


class SessionError(Exception):
    """Base exception for page session errors."""


class SelectorNotFoundError(SessionError):
    """Raised when a required selector never matched."""

    def __init__(self, selector: str) -> None:
        self.selector = selector
        super().__init__(f"Couldn't find required selector: {selector}")


class NavigationError(SessionError):
    """Raised when navigation fails or times out."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        super().__init__(f"Navigation failed for {url}: {reason}")


@dataclass
class JobInfo:
    """What a job's execution function receives while it runs."""

    options: JobOptions
    """Options the job was registered with."""

    page: PageSession
    """The session wrapping the job's tab."""

    status: StatusSink
    """Replaces the session's current status message."""


SessionFunction = Callable[[JobInfo], Awaitable[T]]


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class PageSession:
    """
    Wraps one tab with foreground/background coordination and status reporting.

    A session starts in the background. ``run_in_foreground()`` blocks until
    the shared foreground lock is free, brings the tab to front, and releases
    the lock on every exit path.

    Usage:
        async with pool.acquire() as tab:
            session = PageSession(pool, tab, PageJobOptions(title="search"))
            await session.goto("https://example.com")
            await session.run_in_foreground(do_search)
    """

    def __init__(
        self,
        pool: BrowserPool,
        tab: Page,
        options: PageJobOptions | None = None,
        status_sink: StatusSink | None = None,
        runner: JobRunner | None = None,
    ) -> None:
        """
        Initialize page session.

        Args:
            pool: Pool that owns the tab and the foreground lock
            tab: Tab exclusively owned by this session
            options: Options of the job this session serves
            status_sink: "Set current status" callback from the job runner
            runner: Runner for side jobs started from this session
        """
        self.pool = pool
        self.tab = tab
        self.options = options or PageJobOptions(title="page")
        self._runner = runner
        self._in_foreground = False
        self._status = StatusStack(
            status_sink,
            log_activity=pool.config.log_activity,
            label=self.options.title,
        )
        self._info = JobInfo(options=self.options, page=self, status=self.status)
        self._log = logger.bind(component="page_session", job=self.options.title)

    @property
    def in_foreground(self) -> bool:
        """True while this session holds the foreground lock."""
        return self._in_foreground

    @property
    def url(self) -> str:
        """URL the tab is currently on."""
        return self.tab.url

    @property
    def current_status(self) -> str:
        return self._status.current

    # ========== Status ==========

    def status(self, msg: str) -> None:
        """Replace the current status message, or push it if there is none."""
        self._status.update(msg)

    def status_push(self, msg: str) -> None:
        """Push a status message nested under the current one."""
        self._status.push(msg)

    def status_pop(self, log_activity: bool = True) -> None:
        """Restore the previous status message."""
        self._status.pop(log_activity)

    # ========== Foreground / background ==========

    async def run_in_foreground(self, fn: SessionFunction[T]) -> T:
        """
        Run ``fn`` while owning the visible window.

        Waits for the foreground lock unless this session already holds it, in
        which case ``fn`` runs directly.
        """
        if self._in_foreground:
            return await fn(self._info)

        await self._acquire_foreground()
        try:
            return await fn(self._info)
        finally:
            self._release_foreground()

    async def run_in_background(self, fn: SessionFunction[T]) -> T:
        """
        Run ``fn`` without owning the visible window.

        If this session holds the foreground lock it gives it up for the
        duration of ``fn`` and takes it back afterwards, even if ``fn`` raises.
        """
        if not self._in_foreground:
            return await fn(self._info)

        self._release_foreground()
        try:
            return await fn(self._info)
        finally:
            await self._acquire_foreground()

    async def _run_in(self, wait_in: WaitIn | None, fn: SessionFunction[T]) -> T:
        if wait_in == WaitIn.BACKGROUND:
            return await self.run_in_background(fn)
        if wait_in == WaitIn.FOREGROUND:
            return await self.run_in_foreground(fn)
        return await fn(self._info)

    async def _acquire_foreground(self) -> None:
        self.status_push("Waiting for active page")
        try:
            await self.pool.foreground_lock.acquire()
        finally:
            self.status_pop(False)
        self._in_foreground = True

        try:
            await self.tab.bring_to_front()
        except BaseException:
            self._release_foreground()
            raise
        self.pool.mark_active(self.tab)

    def _release_foreground(self) -> None:
        if not self._in_foreground:
            return
        self._in_foreground = False
        self.pool.foreground_lock.release()

    async def wait(self, ms: float, wait_in: WaitIn | None = None) -> None:
        """
        Pause for ``ms`` milliseconds; zero just yields to other tasks.

        Args:
            ms: Delay in milliseconds
            wait_in: Where to wait; None waits in the current mode
        """

        async def sleep(_info: JobInfo) -> None:
            self.status_push(f"Waiting {ms}ms in {wait_in or 'place'}")
            try:
                await asyncio.sleep(ms / 1000)
            finally:
                self.status_pop(False)

        await self._run_in(wait_in, sleep)

    async def yield_(self) -> None:
        """Step into the background briefly so another session can take the window."""
        await self.wait(0, WaitIn.BACKGROUND)

    def run_side_job(
        self,
        title: str,
        fn: JobFunction,
        tags: tuple[str, ...] = ("side",),
    ) -> Job:
        """
        Register a separate job that needs no tab.

        Lets a page job hand off slow work and release its tab sooner.

        Returns:
            The newly registered job, without waiting for it
        """
        if self._runner is None:
            raise SessionError(f"No job runner attached; cannot start side job {title!r}")
        return self._runner.add_job(JobOptions(title=title, tags=tags), fn)

    # ========== Navigation ==========

    async def goto(self, url: str, options: GoOptions | None = None) -> None:
        """
        Navigate to ``url``.

        Raises:
            NavigationError: If the page fails to load in time
        """
        options = options or GoOptions()
        self.status(f"Navigating to {url}")
        try:
            await self.tab.goto(
                url,
                timeout=options.timeout_ms,
                wait_until=options.wait_until,
            )
        except PlaywrightError as e:
            raise NavigationError(url, str(e)) from e

        if options.wait_after_ms > 0:
            await self.wait(options.wait_after_ms, WaitIn.BACKGROUND)

    async def go_back(self, options: GoOptions | None = None) -> None:
        """As if the browser's "back" button were pressed."""
        options = options or GoOptions()
        self.status("Going 'back'")
        url = self.url
        try:
            await self.tab.go_back(
                timeout=options.timeout_ms,
                wait_until=options.wait_until,
            )
        except PlaywrightError as e:
            raise NavigationError(url, str(e)) from e

    async def wait_for_navigation(
        self,
        options: GoOptions | None = None,
        wait_in: WaitIn | None = None,
    ) -> None:
        """
        Wait for a navigation started by something else, such as a click.

        Raises:
            NavigationError: If no navigation completes in time
        """
        options = options or GoOptions()

        async def navigation(_info: JobInfo) -> None:
            self.status_push(f"Waiting up to {options.timeout_ms}ms for navigation")
            try:
                await self.tab.wait_for_event(
                    "framenavigated",
                    predicate=lambda frame: frame == self.tab.main_frame,
                    timeout=options.timeout_ms,
                )
                if options.wait_until != "commit":
                    await self.tab.wait_for_load_state(
                        options.wait_until,
                        timeout=options.timeout_ms,
                    )
            except PlaywrightError as e:
                raise NavigationError(self.url, str(e)) from e
            finally:
                self.status_pop(False)

        await self._run_in(wait_in, navigation)

    # ========== Selectors ==========

    async def query_immediate(
        self,
        selector: str,
        visible: bool = False,
    ) -> ElementHandle | None:
        """
        Any single match for ``selector``, without waiting.

        Args:
            selector: CSS selector
            visible: Only accept a truly visible match
        """
        if visible:
            for el in await self.tab.query_selector_all(selector):
                if await visibility.is_truly_visible(el):
                    return el
            return None
        return await self.tab.query_selector(selector)

    async def _query_or_none(
        self,
        selector: str,
        visible: bool,
    ) -> ElementHandle | None:
        try:
            return await self.query_immediate(selector, visible)
        except PlaywrightError as e:
            # e.g. the execution context was destroyed by a navigation
            self._log.debug("Query failed", selector=selector, error=str(e))
            return None

    async def wait_for_selector(
        self,
        selector: str,
        options: SelectorOptions | None = None,
    ) -> ElementHandle | None:
        """
        Wait for any single match for ``selector``.

        Checks immediately first; waits only if a timeout is set. Timeouts and
        driver errors yield None.
        """
        options = options or SelectorOptions()

        result = await self._query_or_none(selector, options.visible)
        if result is not None:
            return result

        if not options.timeout_ms:
            return None

        state = "visible" if options.visible else "attached"
        self.status_push(f"Waiting for selector {selector}")
        try:
            if options.wait_in == WaitIn.BACKGROUND:
                result = await self.run_in_background(
                    lambda _info: self.tab.wait_for_selector(
                        selector, timeout=options.timeout_ms, state=state
                    )
                )
            else:
                result = await self.tab.wait_for_selector(
                    selector, timeout=options.timeout_ms, state=state
                )
        except PlaywrightError as e:
            self._log.debug("Selector not found", selector=selector, error=str(e))
            return None
        finally:
            self.status_pop(False)

        if result is None or not options.visible:
            return result

        # The driver's notion of visible is weaker than ours
        return await self._query_or_none(selector, visible=True)

    async def wait_for_selector_or_fail(
        self,
        selector: str,
        options: SelectorOptions | None = None,
    ) -> ElementHandle:
        """
        Same as ``wait_for_selector()`` but never returns None.

        Raises:
            SelectorNotFoundError: If nothing matched in time
        """
        el = await self.wait_for_selector(selector, options)
        if el is None:
            raise SelectorNotFoundError(selector)
        return el

    async def wait_for_all_selectors(
        self,
        selector: str,
        options: SelectorOptions | None = None,
    ) -> list[ElementHandle]:
        """Wait for at least one match, if a timeout is set, then return all matches."""
        options = options or SelectorOptions()
        if options.visible:
            raise ValueError("visible is not supported when waiting for all selectors")

        if options.timeout_ms > 0:
            if await self.wait_for_selector(selector, options) is None:
                return []
        try:
            return await self.tab.query_selector_all(selector)
        except PlaywrightError as e:
            self._log.debug("Query failed", selector=selector, error=str(e))
            return []

    async def wait_for_all_selectors_with_inner(
        self,
        selector: str,
        pattern: str | re.Pattern[str],
        options: SelectorOptions | None = None,
    ) -> list[ElementHandle]:
        """
        Poll for matches of ``selector`` whose trimmed text matches ``pattern``.

        Stops as soon as something matches or the timeout elapses. Never
        raises for absent elements; returns an empty list instead.
        """
        options = options or SelectorOptions()
        matcher = re.compile(pattern) if isinstance(pattern, str) else pattern
        start = time.monotonic()

        while True:
            results = await self._matching_with_inner(selector, matcher, options.visible)
            if results or not options.timeout_ms:
                return results

            elapsed_ms = (time.monotonic() - start) * 1000
            if elapsed_ms >= options.timeout_ms:
                return results

            await self.wait(POLL_INTERVAL_MS, options.wait_in)

    async def _matching_with_inner(
        self,
        selector: str,
        matcher: re.Pattern[str],
        visible: bool,
    ) -> list[ElementHandle]:
        try:
            candidates = await self.tab.query_selector_all(selector)
        except PlaywrightError as e:
            # e.g. the document is being replaced mid-navigation
            self._log.debug("Query failed while polling", selector=selector, error=str(e))
            return []

        results: list[ElementHandle] = []
        for el in candidates:
            try:
                text = await el.evaluate(_TEXT_CONTENT_JS)
                if not text or not matcher.search(text.strip()):
                    continue
                if visible and not await visibility.is_truly_visible(el):
                    continue
            except PlaywrightError:
                # Detached between query and read
                continue
            results.append(el)
        return results

    async def wait_for_first_selector_with_inner(
        self,
        selector: str,
        pattern: str | re.Pattern[str],
        options: SelectorOptions | None = None,
    ) -> ElementHandle | None:
        results = await self.wait_for_all_selectors_with_inner(selector, pattern, options)
        return results[0] if results else None

    async def wait_for_last_selector_with_inner(
        self,
        selector: str,
        pattern: str | re.Pattern[str],
        options: SelectorOptions | None = None,
    ) -> ElementHandle | None:
        results = await self.wait_for_all_selectors_with_inner(selector, pattern, options)
        return results[-1] if results else None

    async def has_any_selector(
        self,
        selector: str,
        options: SelectorOptions | None = None,
    ) -> bool:
        """True if ``selector`` matches something, waiting as ``options`` allow."""
        return await self.wait_for_selector(selector, options) is not None

    # ========== Element reads ==========

    async def get_matching_parent(
        self,
        el: ElementHandle,
        selector: str,
    ) -> ElementHandle | None:
        """Nearest ancestor of ``el`` matching ``selector``, or None."""
        handle = await el.evaluate_handle(_MATCHING_PARENT_JS, selector)
        return handle.as_element()

    async def get_attribute(self, el: ElementHandle, name: str) -> str | None:
        """Literal attribute value from the markup, or None if missing."""
        return await el.get_attribute(name)

    async def get_property(self, el: ElementHandle, name: str) -> str | None:
        """
        Live property value as text, or None if missing or empty.

        Unlike attributes this is computed, e.g. the absolute URL for ``href``.
        """
        handle = await el.get_property(name)
        value = await handle.json_value()
        if not value:
            return None
        return _to_text(value)

    async def evaluate_all(
        self,
        elements: Sequence[ElementHandle],
        script: str,
    ) -> list[Any]:
        """Evaluate ``script`` against every element concurrently."""
        return list(await asyncio.gather(*(el.evaluate(script) for el in elements)))

    # ========== Visibility and geometry ==========

    async def is_hidden(self, el: ElementHandle | None) -> bool:
        return await visibility.is_hidden(el)

    async def is_truly_visible(self, el: ElementHandle | None) -> ElementRect | None:
        return await visibility.is_truly_visible(el)

    async def get_first_visible_element(
        self,
        selector: str,
        parent_level: int = 0,
    ) -> ElementHandle | None:
        """Topmost-then-leftmost truly visible match, optionally its Nth ancestor."""
        return await visibility.first_visible(self.tab, selector, parent_level)

    async def get_element_center(
        self,
        el: ElementHandle,
        scroll_into_view: bool = False,
    ) -> Point:
        """Center of ``el``, optionally after scrolling it toward the viewport center."""
        if scroll_into_view:
            return await self.scroll_to_element(el)
        return await visibility.element_center(el)

    async def page_down(self) -> int:
        """Scroll one viewport down; returns the pixels actually scrolled."""
        return await visibility.page_down(self.tab)

    async def scroll_to_point(self, pt: Point) -> None:
        """Bring ``pt`` near the viewport center unless it is already close."""
        self.status_push(f"Scrolling to {pt.x},{pt.y}")
        try:
            await visibility.scroll_point_to_center(self.tab, pt)
        finally:
            self.status_pop(False)

    async def scroll_to_element(self, el: ElementHandle) -> Point:
        """
        Center ``el`` in the viewport, repeating while the layout keeps moving it.

        Returns:
            The element's center once it stopped moving
        """
        curr = await visibility.element_center(el)
        for _ in range(MAX_SCROLL_ATTEMPTS):
            prev = curr
            await self.scroll_to_point(prev)
            await self.wait(SCROLL_SETTLE_MS)
            curr = await visibility.element_center(el)
            if curr == prev:
                return curr

        self._log.debug("Element position never settled", x=curr.x, y=curr.y)
        return curr

    # ========== Input ==========

    async def click_on_element(
        self,
        el: ElementHandle,
        options: ClickOptions | None = None,
    ) -> None:
        """Move the mouse to the center of ``el`` and click there."""
        options = options or ClickOptions()

        pt = await self.get_element_center(el, options.scroll_into_view)

        self.status_push(f"Moving mouse to {pt.x},{pt.y}")
        try:
            await self.tab.mouse.move(pt.x, pt.y, steps=MOUSE_MOVE_STEPS)
        finally:
            self.status_pop(False)

        # Reload because things can shift
        pt = await visibility.element_center(el)
        self.status_push(f"Clicking on {pt.x},{pt.y}")
        try:
            await self.tab.mouse.click(pt.x, pt.y, delay=CLICK_PRESS_DELAY_MS)
        finally:
            self.status_pop(False)

        if options.wait_after != 0:
            await self.wait(options.wait_after, options.wait_in)

    async def type_in_element(
        self,
        el: ElementHandle,
        text: str,
        options: TypeOptions | None = None,
    ) -> None:
        """Focus ``el`` and type ``text`` into it as keystrokes."""
        options = options or TypeOptions()

        if options.scroll_into_view:
            await self.scroll_to_element(el)

        self.status_push("Focusing")
        try:
            await el.focus()
            await self.wait(FOCUS_SETTLE_MS)
        finally:
            self.status_pop(False)

        keyboard = self.tab.keyboard
        delay = TYPE_KEY_DELAY_MS if options.slow_typing else 0
        self.status_push(f"Typing {len(text)} characters")
        try:
            if options.multi_lined_shift_return:
                for i, line in enumerate(text.split("\n")):
                    if i:
                        await self._soft_line_break()
                    line = line.rstrip()
                    if line:
                        await keyboard.type(line, delay=delay)
            else:
                await keyboard.type(text, delay=delay)

            if options.press_return_at_end:
                await keyboard.press("Enter")
        finally:
            self.status_pop(False)

        if options.wait_after > 0:
            await self.wait(options.wait_after, options.wait_in)

    async def _soft_line_break(self) -> None:
        keyboard = self.tab.keyboard
        await keyboard.down("Shift")
        try:
            await keyboard.press("Enter")
        finally:
            await keyboard.up("Shift")

    async def press_escape(self) -> None:
        await self.tab.keyboard.press("Escape")
