"""Dense renumbering of element markers in accessibility-tree text.

Accessibility trees arrive as indented text where each element carries an
inline marker such as ``[0-1234] button: Submit``. The ids inside the markers
are sparse and meaningless to a workflow, so they are rewritten to a dense
``[0]``, ``[1]``, ... sequence, and the locator of every marker is collected
into a list aligned with the new numbering.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

__all__ = ["MARKER_PATTERN", "RenumberedTree", "iter_marker_ids", "renumber_tree"]

# "[12] " or "[0-345] "; the trailing space keeps "[12]x" or "[1-2-3] " out
MARKER_PATTERN = re.compile(r"\[(\d+(?:-\d+)?)\] ")


@dataclass(frozen=True)
class RenumberedTree:
    """Tree text with dense markers plus the locators aligned to them."""

    tree: str
    locators: list[str | None] = field(default_factory=list)
    original_ids: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.locators)

    def unlocated_ids(self) -> list[str]:
        """Original ids of the markers that have no locator."""
        return [original for original, locator in zip(self.original_ids, self.locators, strict=True) if locator is None]

    def to_json(self) -> dict[str, Any]:
        """Return the record handed back to the workflow host."""
        return {
            "accessibilityTree": self.tree,
            "xpaths": list(self.locators),
        }


def iter_marker_ids(text: str) -> Iterator[str]:
    """Yield the original marker ids of ``text`` in reading order."""
    for match in MARKER_PATTERN.finditer(text):
        yield match.group(1)


def renumber_tree(text: str, locator_map: Mapping[str, str]) -> RenumberedTree:
    """Rewrite every marker of ``text`` to its 0-based position.

    Matches are taken from the unmodified input, so replacement lengths never
    shift later match offsets; the rewritten text is accumulated separately.
    A marker whose id is not in ``locator_map`` gets ``None`` in the locator
    list. Repeated ids are numbered per occurrence.

    Args:
        text: Accessibility tree text
        locator_map: Locator per original marker id

    Returns:
        The renumbered tree with its aligned locator list

    """
    parts: list[str] = []
    locators: list[str | None] = []
    original_ids: list[str] = []
    cursor = 0

    for index, match in enumerate(MARKER_PATTERN.finditer(text)):
        original_id = match.group(1)
        parts.append(text[cursor : match.start()])
        parts.append(f"[{index}] ")
        cursor = match.end()
        locators.append(locator_map.get(original_id))
        original_ids.append(original_id)

    parts.append(text[cursor:])
    return RenumberedTree(tree="".join(parts), locators=locators, original_ids=original_ids)
