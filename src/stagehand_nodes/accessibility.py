"""Accessibility-tree snapshots and element locators over the DevTools protocol.

The tree comes from ``Accessibility.getFullAXTree`` on a page of a browser
reached through :meth:`playwright.async_api.BrowserType.connect_over_cdp`.
Each element line carries a ``[<frame>-<backendNodeId>]`` marker, and
:meth:`CdpAccessibilitySource.fetch_locator_map` turns those markers back
into XPath selectors. Only the main frame is traversed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Self

from playwright.async_api import Browser, CDPSession, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from .errors import LocatorMapError, TreeSnapshotError
from .logging_config import get_logger
from .tree import iter_marker_ids

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from types import TracebackType

logger = get_logger(__name__)

__all__ = ["CdpAccessibilitySource", "format_ax_tree"]

MAIN_FRAME_ORDINAL = 0
_STRUCTURAL_ROLES = frozenset({"generic", "none"})
_DROPPED_ROLES = frozenset({"InlineTextBox"})
_CONNECT_TIMEOUT_MS = 30_000

# Runs with ``this`` bound to the resolved node; text nodes map to their element
_XPATH_JS = """
function () {
    const steps = [];
    let node = this.nodeType === Node.TEXT_NODE ? this.parentElement : this;
    while (node && node.nodeType === Node.ELEMENT_NODE) {
        let index = 1;
        let sibling = node.previousElementSibling;
        while (sibling) {
            if (sibling.nodeName === node.nodeName) index += 1;
            sibling = sibling.previousElementSibling;
        }
        const name = node.nodeName.toLowerCase();
        steps.unshift(index > 1 ? `${name}[${index}]` : name);
        node = node.parentElement;
    }
    return steps.length ? "/" + steps.join("/") : null;
}
"""


def _ax_value(node: Mapping[str, Any], key: str) -> str:
    value = node.get(key)
    if isinstance(value, dict):
        return str(value.get("value") or "").strip()
    return ""


def format_ax_tree(nodes: Sequence[Mapping[str, Any]]) -> str:
    """Render CDP accessibility nodes as indented, marker-tagged lines.

    Ignored nodes and unnamed structural nodes are skipped and their children
    are lifted one level up; ``InlineTextBox`` nodes are dropped with their
    subtrees.

    Args:
        nodes: The ``nodes`` list returned by ``Accessibility.getFullAXTree``

    Returns:
        Tree text, one element per line, e.g. ``[0-42] button: Submit``

    """
    by_id = {node["nodeId"]: node for node in nodes if "nodeId" in node}
    child_ids = {child for node in nodes for child in node.get("childIds", [])}
    roots = [node for node in nodes if node.get("nodeId") not in child_ids]

    lines: list[str] = []
    # (node, depth) pairs; children are pushed reversed to keep document order
    stack: list[tuple[Mapping[str, Any], int]] = [(root, 0) for root in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        role = _ax_value(node, "role")
        if role in _DROPPED_ROLES:
            continue
        name = _ax_value(node, "name")

        child_depth = depth
        if not node.get("ignored") and not (role in _STRUCTURAL_ROLES and not name):
            label = f"{role}: {name}" if name else role
            backend_id = node.get("backendDOMNodeId")
            marker = f"[{MAIN_FRAME_ORDINAL}-{backend_id}] " if backend_id is not None else ""
            lines.append(f"{'  ' * depth}{marker}{label}")
            child_depth = depth + 1

        children = [by_id[child] for child in node.get("childIds", []) if child in by_id]
        stack.extend((child, child_depth) for child in reversed(children))

    return "\n".join(lines)


class CdpAccessibilitySource:
    """Tree snapshot and locator map provider for one browser connection.

    Use as an async context manager; the connection is closed on exit.
    """

    def __init__(self, cdp_url: str, *, timeout_ms: float = _CONNECT_TIMEOUT_MS) -> None:
        self.cdp_url = cdp_url
        self.timeout_ms = timeout_ms
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._session: CDPSession | None = None

    async def __aenter__(self) -> Self:
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.connect_over_cdp(self.cdp_url, timeout=self.timeout_ms)
            context = self._browser.contexts[0] if self._browser.contexts else await self._browser.new_context()
            page = context.pages[0] if context.pages else await context.new_page()
            self._session = await context.new_cdp_session(page)
        except PlaywrightError as e:
            await self.close()
            msg = f"Could not connect to browser at {self.cdp_url}: {e}"
            raise TreeSnapshotError(msg) from e
        logger.info("Connected to browser", cdp_url=self.cdp_url)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Detach from the browser without closing it; the browser is not ours."""
        if self._session is not None:
            try:
                await self._session.detach()
            except PlaywrightError as e:
                logger.debug("CDP session already detached", error=str(e))
            self._session = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._browser = None

    def _require_session(self) -> CDPSession:
        if self._session is None:
            msg = "CdpAccessibilitySource must be entered before use"
            raise RuntimeError(msg)
        return self._session

    async def fetch_tree(self) -> str:
        """Return the accessibility tree of the current page.

        Raises:
            TreeSnapshotError: If the browser cannot be queried

        """
        session = self._require_session()
        try:
            response = await session.send("Accessibility.getFullAXTree")
        except PlaywrightError as e:
            msg = f"Failed to fetch accessibility tree: {e}"
            raise TreeSnapshotError(msg) from e
        nodes = response.get("nodes", [])
        logger.info("Fetched accessibility tree", nodes=len(nodes))
        return format_ax_tree(nodes)

    async def fetch_locator_map(self, tree: str) -> dict[str, str]:
        """Resolve an XPath locator for every element marker in ``tree``.

        Markers whose node no longer exists are left out of the map.

        Args:
            tree: Tree text as returned by :meth:`fetch_tree`

        Returns:
            Mapping from marker id to an ``xpath=`` selector

        Raises:
            LocatorMapError: If the browser connection fails

        """
        session = self._require_session()
        locators: dict[str, str] = {}
        try:
            await session.send("DOM.enable")
            for marker_id in dict.fromkeys(iter_marker_ids(tree)):
                xpath = await self._resolve_xpath(session, marker_id)
                if xpath is not None:
                    locators[marker_id] = f"xpath={xpath}"
        except PlaywrightError as e:
            msg = f"Failed to build locator map: {e}"
            raise LocatorMapError(msg) from e
        logger.info("Built locator map", locators=len(locators))
        return locators

    async def _resolve_xpath(self, session: CDPSession, marker_id: str) -> str | None:
        frame, _, backend_id = marker_id.partition("-")
        if not backend_id or int(frame) != MAIN_FRAME_ORDINAL:
            return None
        try:
            resolved = await session.send("DOM.resolveNode", {"backendNodeId": int(backend_id)})
            object_id = resolved.get("object", {}).get("objectId")
            if object_id is None:
                return None
            try:
                result = await session.send(
                    "Runtime.callFunctionOn",
                    {"objectId": object_id, "functionDeclaration": _XPATH_JS, "returnByValue": True},
                )
            finally:
                await session.send("Runtime.releaseObject", {"objectId": object_id})
        except PlaywrightError as e:
            if self._browser is not None and not self._browser.is_connected():
                raise
            logger.debug("Element vanished before it could be resolved", marker=marker_id, error=str(e))
            return None

        value = result.get("result", {}).get("value")
        return value if isinstance(value, str) and value else None
