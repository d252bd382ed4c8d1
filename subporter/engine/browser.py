"""Playwright implementation of the action and listing surfaces.

All element lookup lives here. Each logical target has a list of fallback CSS
selectors tried in order, since the platform markup changes without notice.
"""

from __future__ import annotations

import re
import time
from contextlib import contextmanager
from threading import Lock
from typing import Any, Iterator

import structlog
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright
from selectolax.parser import HTMLParser, Node

from ..config import BrowserConfig
from ..errors import ProbeTimeoutError, SurfaceError, SurfaceUnavailableError
from .surface import ActionResult, ListingMeasurement, ListingUnit, Probe, SurfaceState

SELECTORS: dict[str, list[str]] = {
    "channel_renderer": [
        "ytd-channel-renderer",
        "ytd-grid-channel-renderer",
        '[class*="channel-renderer"]',
    ],
    "channel_name": [
        "ytd-channel-name yt-formatted-string",
        "#channel-title",
        '[class*="channel-name"]',
        "a#channel-name",
    ],
    "channel_handle": [
        "#channel-handle",
        '[class*="channel-handle"]',
        'yt-formatted-string[class*="handle"]',
    ],
    "channel_link": [
        "a#main-link",
        'a[href*="/channel/"]',
        'a[href*="/@"]',
    ],
    "channel_thumbnail": [
        "img#img",
        "yt-img-shadow img",
        '[class*="avatar"] img',
    ],
    "subscriber_count": [
        "#subscriber-count",
        '[class*="subscriber-count"]',
        'yt-formatted-string[aria-label*="subscriber"]',
    ],
    "subscribe_button": [
        'ytd-subscribe-button-renderer button[aria-label*="Subscribe"]',
        "button#subscribe-button",
        "paper-button#subscribe-button",
        'ytd-button-renderer button[aria-label*="Subscribe"]',
        'yt-button-shape button[aria-label*="Subscribe"]',
    ],
    "user_avatar": [
        "ytd-topbar-menu-button-renderer #avatar-btn",
        "button#avatar-btn",
        '[class*="avatar-btn"]',
    ],
}

_PROBE_SELECTORS = {
    Probe.SUBSCRIBE: "subscribe_button",
    Probe.ACCOUNT: "user_avatar",
}

_HANDLE_TOKEN = re.compile(r"@[\w.-]+")
_SUBSCRIBED_MARKERS = ("unsubscribe", "subscribed", "notification")


def is_already_subscribed(aria_label: str | None) -> bool:
    label = (aria_label or "").lower()
    return any(marker in label for marker in _SUBSCRIBED_MARKERS)


def _first_node(root: Node | HTMLParser, key: str) -> Node | None:
    for selector in SELECTORS[key]:
        node = root.css_first(selector)
        if node is not None:
            return node
    return None


def _node_text(node: Node | None) -> str | None:
    if node is None:
        return None
    text = node.text(strip=True)
    return text or None


def parse_unit_html(html: str) -> ListingUnit:
    """Lift the raw fields of one listing entry from its outer HTML."""

    tree = HTMLParser(html)
    link = _first_node(tree, "channel_link")
    thumbnail = _first_node(tree, "channel_thumbnail")
    handle_text = _node_text(_first_node(tree, "channel_handle"))
    handle_match = _HANDLE_TOKEN.search(handle_text or "")
    return ListingUnit(
        href=link.attributes.get("href") if link is not None else None,
        name=_node_text(_first_node(tree, "channel_name")),
        handle=handle_match.group(0) if handle_match else None,
        thumbnail=thumbnail.attributes.get("src") if thumbnail is not None else None,
        count_text=_node_text(_first_node(tree, "subscriber_count")),
    )


class PlaywrightSurface:
    """One persistent-profile Chromium page shared by export and import runs.

    The browser is started lazily on first use so that commands which never touch
    the page (status, settings, compare) do not pay for a launch.
    """

    def __init__(self, config: BrowserConfig | None = None, logger: Any | None = None) -> None:
        self.config = config or BrowserConfig()
        self.logger = logger or structlog.get_logger("subporter").bind(component="browser")
        self._lock = Lock()
        self._playwright = None
        self._context = None
        self._page = None

    @property
    def origin(self) -> str:
        return self.config.base_url

    # lifecycle ---------------------------------------------------------------

    def ensure_ready(self) -> None:
        with self._lock:
            if self._page is not None and not self._page.is_closed():
                return
            try:
                if self._playwright is None:
                    self._playwright = sync_playwright().start()
                if self._context is None:
                    width, height = self.config.viewport_size
                    self._context = self._playwright.chromium.launch_persistent_context(
                        str(self.config.user_data_dir),
                        headless=self.config.headless,
                        channel=self.config.channel,
                        locale=self.config.locale,
                        viewport={"width": width, "height": height},
                    )
                    self._context.set_default_timeout(self.config.navigation_timeout)
                pages = self._context.pages
                self._page = pages[0] if pages else self._context.new_page()
            except PlaywrightError as exc:
                self.logger.error("browser_start_failed", error=str(exc))
                raise SurfaceUnavailableError(f"Cannot start browser: {exc}") from exc
            self.logger.info(
                "browser_ready",
                profile=str(self.config.user_data_dir),
                headless=self.config.headless,
            )

    def close(self) -> None:
        with self._lock:
            if self._page is not None:
                if not self._page.is_closed():
                    self._page.close()
                self._page = None
            if self._context is not None:
                self._context.close()
                self._context = None
            if self._playwright is not None:
                self._playwright.stop()
                self._playwright = None

    @contextmanager
    def _guarded(self, action: str) -> Iterator[Any]:
        page = self._page
        if page is None or page.is_closed():
            raise SurfaceUnavailableError("No active browser page")
        try:
            yield page
        except PlaywrightTimeoutError as exc:
            raise SurfaceError(f"{action} timed out: {exc}") from exc
        except PlaywrightError as exc:
            if page.is_closed():
                raise SurfaceUnavailableError(f"Browser page closed during {action}") from exc
            raise SurfaceError(f"{action} failed: {exc}") from exc

    # action surface ----------------------------------------------------------

    def navigate(self, target: str) -> None:
        with self._guarded("navigation") as page:
            page.goto(target, wait_until="domcontentloaded", timeout=self.config.navigation_timeout)

    def _wait_for(self, page: Any, key: str) -> Any | None:
        deadline = time.monotonic() + self.config.probe_timeout / 1000
        while True:
            for selector in SELECTORS[key]:
                handle = page.query_selector(selector)
                if handle is not None:
                    return handle
            if time.monotonic() >= deadline:
                return None
            page.wait_for_timeout(100)

    def detect_state(self, probe: Probe) -> SurfaceState:
        with self._guarded(f"probe {probe.value}") as page:
            element = self._wait_for(page, _PROBE_SELECTORS[probe])
            if element is None:
                return SurfaceState.ABSENT
            if probe is Probe.ACCOUNT:
                return SurfaceState.ACTIVE
            if is_already_subscribed(element.get_attribute("aria-label")):
                return SurfaceState.ACTIVE
            return SurfaceState.READY

    def act(self, probe: Probe) -> ActionResult:
        if probe is not Probe.SUBSCRIBE:
            raise SurfaceError(f"Probe '{probe.value}' has no action")
        with self._guarded("subscribe") as page:
            button = self._wait_for(page, _PROBE_SELECTORS[probe])
            if button is None:
                raise ProbeTimeoutError("Subscribe button did not appear")
            label = button.get_attribute("aria-label")
            button.click()
            page.wait_for_timeout(int(self.config.confirm_delay * 1000))
            return ActionResult(performed=True, detail=label)

    # listing surface ---------------------------------------------------------

    def scroll_to_end(self) -> None:
        with self._guarded("scroll") as page:
            page.evaluate("window.scrollTo(0, document.documentElement.scrollHeight)")

    def _renderer_selector(self, page: Any) -> str | None:
        for selector in SELECTORS["channel_renderer"]:
            if page.locator(selector).count() > 0:
                return selector
        return None

    def measure(self) -> ListingMeasurement:
        with self._guarded("measure") as page:
            selector = self._renderer_selector(page)
            count = page.locator(selector).count() if selector else 0
            extent = int(page.evaluate("document.documentElement.scrollHeight") or 0)
            return ListingMeasurement(item_count=count, extent=extent)

    def units(self) -> list[ListingUnit]:
        with self._guarded("unit collection") as page:
            selector = self._renderer_selector(page)
            if selector is None:
                return []
            fragments = page.locator(selector).evaluate_all(
                "elements => elements.map(el => el.outerHTML)"
            )
        return [parse_unit_html(fragment) for fragment in fragments]


__all__ = ["PlaywrightSurface", "SELECTORS", "is_already_subscribed", "parse_unit_html"]
