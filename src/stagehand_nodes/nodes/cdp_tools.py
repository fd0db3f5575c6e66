"""CDP Tools node: the page accessibility tree with element locators."""

from __future__ import annotations

from stagehand_nodes.accessibility import CdpAccessibilitySource
from stagehand_nodes.constants import MAIN_CONNECTION
from stagehand_nodes.errors import NodeParameterError
from stagehand_nodes.host import Node, NodeExecutionContext, NodeExecutionData
from stagehand_nodes.logging_config import get_logger
from stagehand_nodes.node_metadata import (
    NodeDescription,
    NodeGroup,
    NodeProperty,
    PropertyType,
    register_node_with_metadata,
)
from stagehand_nodes.tree import renumber_tree

logger = get_logger(__name__)

CDP_TOOLS_DESCRIPTION = NodeDescription(
    name="cdpTools",
    display_name="CDP Tools",
    icon="file:chrome.svg",
    group=[NodeGroup.TRANSFORM],
    description="Get information from a web page using Chrome DevTools Protocol",
    defaults={"name": "CDP Tools"},
    inputs=[MAIN_CONNECTION],
    outputs=[MAIN_CONNECTION],
    usable_as_tool=True,
    properties=[
        NodeProperty(
            name="url",
            display_name="CDP URL",
            type=PropertyType.STRING,
            default="",
            required=True,
            placeholder="ws://localhost:9222/devtools/browser/...",
            description="Chrome DevTools Protocol URL to connect to the browser",
        ),
    ],
)


@register_node_with_metadata(CDP_TOOLS_DESCRIPTION)
class CdpToolsNode(Node):
    """Returns the densely numbered accessibility tree and one locator per element."""

    source_factory = CdpAccessibilitySource

    async def execute(self, context: NodeExecutionContext) -> list[NodeExecutionData]:
        """Snapshot the page behind each item's CDP URL.

        Raises:
            NodeParameterError: If an item has no CDP URL
            TreeSnapshotError: If the tree cannot be fetched
            LocatorMapError: If locators cannot be resolved

        """
        results: list[NodeExecutionData] = []
        for index, _item in enumerate(context.get_input_data()):
            cdp_url = context.get_node_parameter("url", index, "")
            if not cdp_url:
                raise NodeParameterError("url", "CDP URL is required")

            async with self.source_factory(cdp_url) as source:
                tree = await source.fetch_tree()
                locator_map = await source.fetch_locator_map(tree)

            renumbered = renumber_tree(tree, locator_map)
            logger.info(
                "Accessibility tree renumbered",
                elements=len(renumbered),
                located=sum(locator is not None for locator in renumbered.locators),
                unlocated=renumbered.unlocated_ids(),
            )
            results.append(NodeExecutionData(json=renumbered.to_json(), paired_item=index))
        return results
