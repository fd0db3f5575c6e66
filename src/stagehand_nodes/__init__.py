"""Stagehand browser-automation nodes for workflow hosts."""

from importlib.metadata import version

__version__ = version("stagehand-nodes")
