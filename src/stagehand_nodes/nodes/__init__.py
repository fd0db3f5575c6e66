"""Workflow nodes; importing this package registers them."""

from .cdp_tools import CdpToolsNode
from .stagehand import StagehandNode

__all__ = ["CdpToolsNode", "StagehandNode"]
