"""Screenshot persistence under the nodes home directory."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from .constants import DEFAULT_SCREENSHOTS_FOLDER, NODES_HOME
from .logging_config import get_logger

if TYPE_CHECKING:
    from pathlib import Path

    from .automation import StagehandSession

logger = get_logger(__name__)


def screenshot_path(folder: str, filename: str, home: Path | None = None) -> Path:
    """Return where a screenshot is stored, creating its folder.

    Args:
        folder: Folder relative to the nodes home directory
        filename: File name without extension
        home: Base directory; defaults to ``NODES_HOME``

    Returns:
        Path of the PNG file

    """
    base = home if home is not None else NODES_HOME
    full_folder = base / (folder or DEFAULT_SCREENSHOTS_FOLDER)
    full_folder.mkdir(parents=True, exist_ok=True)
    return full_folder / f"{filename}.png"


def timestamped_name(prefix: str) -> str:
    """File name stem with a millisecond timestamp, e.g. ``act-1-1718000000000``."""
    return f"{prefix}-{int(time.time() * 1000)}"


async def take_screenshot(
    session: StagehandSession,
    folder: str,
    filename: str,
    home: Path | None = None,
) -> str:
    """Capture the session's page and write it to disk.

    Returns:
        The path of the written file

    """
    path = screenshot_path(folder, filename, home)
    path.write_bytes(await session.screenshot())
    logger.info("Screenshot saved", path=str(path))
    return str(path)
