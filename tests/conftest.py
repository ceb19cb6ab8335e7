"""Pytest fixtures for tabwright tests."""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from tabwright.config import BrowserConfig, RunnerConfig
from tabwright.options import PageJobOptions
from tabwright.pool import BrowserHandle, BrowserPool
from tabwright.session import PageSession


def make_tab(url: str = "about:blank") -> MagicMock:
    """Create a mock tab with the driver calls a session makes."""
    tab = MagicMock(name="tab")
    tab.url = url
    tab.main_frame = MagicMock(name="main_frame")
    for name in (
        "bring_to_front",
        "goto",
        "go_back",
        "query_selector",
        "query_selector_all",
        "wait_for_selector",
        "wait_for_event",
        "wait_for_load_state",
        "evaluate",
    ):
        setattr(tab, name, AsyncMock(name=name))
    tab.query_selector.return_value = None
    tab.query_selector_all.return_value = []

    tab.mouse = MagicMock(name="mouse")
    tab.mouse.move = AsyncMock()
    tab.mouse.click = AsyncMock()

    tab.keyboard = MagicMock(name="keyboard")
    for name in ("type", "press", "down", "up"):
        setattr(tab.keyboard, name, AsyncMock())
    return tab


def make_element(evaluate: Any = None, **kwargs: Any) -> MagicMock:
    """Create a mock element handle whose ``evaluate`` returns ``evaluate``."""
    el = MagicMock(name=kwargs.pop("name", "element"))
    el.evaluate = AsyncMock(return_value=evaluate)
    el.evaluate_handle = AsyncMock()
    el.get_attribute = AsyncMock()
    el.get_property = AsyncMock()
    el.focus = AsyncMock()
    for key, value in kwargs.items():
        setattr(el, key, value)
    return el


def rect(top: float, left: float, width: float = 10, height: float = 10) -> dict[str, float]:
    """Bounding rectangle as returned by the visibility script."""
    return {
        "x": left,
        "y": top,
        "width": width,
        "height": height,
        "top": top,
        "left": left,
        "right": left + width,
        "bottom": top + height,
    }


class FakeBrowser:
    """Launcher stand-in that records launches and hands out mock tabs."""

    def __init__(self, initial_tabs: int = 1, fail: Exception | None = None) -> None:
        self.initial_tabs = initial_tabs
        self.fail = fail
        self.launches = 0
        self.contexts: list[MagicMock] = []

    async def __call__(self, config: BrowserConfig) -> BrowserHandle:
        self.launches += 1
        if self.fail is not None:
            raise self.fail

        context = MagicMock(name="context")
        context.pages = [make_tab() for _ in range(self.initial_tabs)]
        context.new_page = AsyncMock(side_effect=lambda: make_tab())
        context.close = AsyncMock()
        self.contexts.append(context)
        return BrowserHandle(context=context)


@pytest.fixture
def browser_config() -> BrowserConfig:
    """Headless browser configuration."""
    return BrowserConfig(headless=True)


@pytest.fixture
def runner_config() -> RunnerConfig:
    """Runner configuration with room for a handful of jobs."""
    return RunnerConfig(max_parallel_jobs=5)


@pytest.fixture
def fake_browser() -> FakeBrowser:
    """A launcher producing one initial tab."""
    return FakeBrowser()


@pytest.fixture
def pool(browser_config: BrowserConfig, fake_browser: FakeBrowser) -> BrowserPool:
    """Browser pool over the fake launcher."""
    return BrowserPool(browser_config, launcher=fake_browser)


@pytest.fixture
def statuses() -> list[str]:
    """Collects every published status message."""
    return []


@pytest.fixture
def session_factory(
    pool: BrowserPool,
    statuses: list[str],
) -> Callable[..., PageSession]:
    """Build sessions on the shared pool, each with its own mock tab."""

    def factory(title: str = "job", tab: MagicMock | None = None, **kwargs: Any) -> PageSession:
        return PageSession(
            pool,
            tab or make_tab(),
            PageJobOptions(title=title),
            status_sink=statuses.append,
            **kwargs,
        )

    return factory


@pytest.fixture
def session(session_factory: Callable[..., PageSession]) -> PageSession:
    """A single session on a mock tab."""
    return session_factory()
