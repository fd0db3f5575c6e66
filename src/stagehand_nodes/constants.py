"""Shared constants for the stagehand_nodes package.

This module contains constants that are used across multiple modules
to avoid circular imports. It does not import anything from the internal
codebase.
"""

import os
from pathlib import Path

# Host-side home directory; screenshot folders are resolved relative to it
NODES_HOME = Path(os.getenv("STAGEHAND_NODES_HOME", "/home/node"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Connection type names understood by NodeExecutionContext
MAIN_CONNECTION = "main"
AI_LANGUAGE_MODEL_CONNECTION = "ai_languageModel"

DEFAULT_DOM_SETTLE_TIMEOUT_MS = 10_000
DEFAULT_AGENT_MAX_STEPS = 10
DEFAULT_SCREENSHOTS_FOLDER = "screenshots"

# Log lines serialized above this size are dropped from node output
MAX_LOG_LINE_CHARS = 5000
