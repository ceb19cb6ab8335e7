"""
Element visibility and geometry for click targeting.

An element is "truly visible" when it is fully inside the viewport, is the
element actually hit at its own center point, and neither it nor any ancestor
is hidden by style. That is stronger than what the driver's own visibility
check guarantees, and it is what decides where clicks and typing land.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Sequence

import structlog

if TYPE_CHECKING:
    from playwright.async_api import ElementHandle, Page

logger = structlog.get_logger(__name__)

SCROLL_THRESHOLD_PX = 10
"""Scrolls smaller than this are skipped to avoid jitter."""

_IS_HIDDEN_JS = """
(el) => {
    const aria = el.getAttribute('aria-hidden');
    if (aria && aria !== 'false') return true;
    const style = window.getComputedStyle(el);
    if (style.display === 'none') return true;
    if (style.visibility === 'hidden') return true;
    return false;
}
"""

_TRULY_VISIBLE_JS = """
(el) => {
    const rect = el.getBoundingClientRect();
    const viewHeight = window.innerHeight || document.documentElement.clientHeight;
    const viewWidth = window.innerWidth || document.documentElement.clientWidth;
    if (rect.top < 0 || rect.left < 0 || rect.width < 1 || rect.height < 1 ||
        rect.bottom > viewHeight || rect.right > viewWidth) {
        return null;
    }

    const cx = (rect.left + rect.right) / 2;
    const cy = (rect.top + rect.bottom) / 2;
    let hit = document.elementFromPoint(cx, cy);
    while (hit !== el) {
        if (!hit) return null;
        hit = hit.parentElement;
    }

    for (let p = el; p; p = p.parentElement) {
        const style = window.getComputedStyle(p);
        if (style.display === 'none' || style.visibility === 'hidden' ||
            style.opacity === '0' || style.width === '0px' || style.height === '0px') {
            return null;
        }
    }
    return {
        x: rect.x, y: rect.y, width: rect.width, height: rect.height,
        top: rect.top, right: rect.right, bottom: rect.bottom, left: rect.left,
    };
}
"""

_CENTER_JS = """
(el) => {
    const rect = el.getBoundingClientRect();
    return {
        x: Math.round(rect.left + rect.width / 2),
        y: Math.round(rect.top + rect.height / 2),
    };
}
"""

_SCROLL_TO_POINT_JS = """
([x, y, threshold]) => {
    const viewHeight = window.innerHeight || document.documentElement.clientHeight;
    const viewWidth = window.innerWidth || document.documentElement.clientWidth;
    const dy = Math.round(y - viewHeight / 2);
    const dx = Math.round(x - viewWidth / 2);
    if (Math.abs(dy) > threshold || Math.abs(dx) > threshold) {
        window.scrollBy(dx, dy);
    }
}
"""

_PAGE_DOWN_JS = """
() => {
    const before = window.scrollY;
    window.scrollBy(0, window.innerHeight);
    return window.scrollY - before;
}
"""

_PARENT_JS = "(el) => el.parentElement ?? el"


@dataclass(frozen=True, slots=True)
class Point:
    """A point in window coordinates."""

    x: float
    y: float


@dataclass(frozen=True, slots=True)
class ElementRect:
    """Bounding rectangle of an element in window coordinates."""

    x: float
    y: float
    width: float
    height: float
    top: float
    right: float
    bottom: float
    left: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ElementRect:
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
            top=float(data["top"]),
            right=float(data["right"]),
            bottom=float(data["bottom"]),
            left=float(data["left"]),
        )


async def is_hidden(el: ElementHandle | None) -> bool:
    """
    True if the element is absent or hidden by its own markup or style.

    Shallow: only the element itself is checked, not its ancestors.
    """
    if el is None:
        return True
    return bool(await el.evaluate(_IS_HIDDEN_JS))


async def is_truly_visible(el: ElementHandle | None) -> ElementRect | None:
    """
    Return the element's rectangle if it is truly visible, else None.

    Callers use the rectangle to avoid reading geometry a second time.
    """
    if el is None:
        return None
    data = await el.evaluate(_TRULY_VISIBLE_JS)
    if not data:
        return None
    return ElementRect.from_dict(data)


async def element_center(el: ElementHandle) -> Point:
    """Center of the element in window coordinates, rounded to whole pixels."""
    data = await el.evaluate(_CENTER_JS)
    return Point(x=data["x"], y=data["y"])


def visibility_sort_key(rect: ElementRect, index: int) -> tuple[int, int, int]:
    """
    Row-major ordering: topmost first, then leftmost, then discovery order.

    Positions are rounded so sub-pixel differences count as ties.
    """
    return (round(rect.top), round(rect.left), index)


def pick_topmost(candidates: Sequence[tuple[Any, ElementRect]]) -> Any | None:
    """Return the item of the topmost-then-leftmost ``(item, rect)`` pair."""
    if not candidates:
        return None
    ordered = sorted(
        enumerate(candidates),
        key=lambda pair: visibility_sort_key(pair[1][1], pair[0]),
    )
    return ordered[0][1][0]


async def nth_parent(el: ElementHandle, level: int) -> ElementHandle:
    """Walk ``level`` steps up the parent chain, stopping at the root."""
    for _ in range(level):
        handle = await el.evaluate_handle(_PARENT_JS)
        parent = handle.as_element()
        if parent is None:
            break
        el = parent
    return el


async def first_visible(
    page: Page,
    selector: str,
    parent_level: int = 0,
) -> ElementHandle | None:
    """
    Of all elements matching ``selector``, return the topmost truly visible one.

    Args:
        page: Page to query
        selector: CSS selector
        parent_level: If greater than zero, return that ancestor of the
            chosen element instead of the element itself.
    """
    sources = await page.query_selector_all(selector)
    rects = await asyncio.gather(*(is_truly_visible(el) for el in sources))

    candidates: list[tuple[ElementHandle, ElementRect]] = []
    for el, rect in zip(sources, rects):
        if rect is None:
            continue
        if parent_level > 0:
            el = await nth_parent(el, parent_level)
        candidates.append((el, rect))

    logger.debug(
        "Visible candidates",
        selector=selector,
        matched=len(sources),
        visible=len(candidates),
    )
    return pick_topmost(candidates)


async def scroll_point_to_center(
    page: Page,
    pt: Point,
    threshold: int = SCROLL_THRESHOLD_PX,
) -> None:
    """Scroll so ``pt`` moves toward the viewport center, unless already close."""
    await page.evaluate(_SCROLL_TO_POINT_JS, [pt.x, pt.y, threshold])


async def page_down(page: Page) -> int:
    """Scroll down one viewport height; returns the pixels actually scrolled."""
    return int(await page.evaluate(_PAGE_DOWN_JS))
