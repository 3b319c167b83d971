"""Flowchart layout for the process graph view.

Sections are stacked top to bottom in display order. Within a section,
components fill a grid four columns wide. Consecutive components in a
section are joined by a flow edge; stored connections add labelled edges.
"""

import math
from typing import Any

COLUMNS = 4
HORIZONTAL_SPACING = 280
VERTICAL_SPACING = 180
SECTION_GAP = 80
START_X = 150
START_Y = 100


def layout_nodes(sections: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Assign an (x, y) grid position to every component.

    ``sections`` must already be in display order, each with a
    ``components`` list in display order.
    """
    nodes: list[dict[str, Any]] = []
    current_y = START_Y

    for section in sections:
        components = section.get("components", [])
        for index, component in enumerate(components):
            row, col = divmod(index, COLUMNS)
            nodes.append(
                {
                    "id": component["id"],
                    "title": component["title"],
                    "health_status": component["health_status"],
                    "section_id": section["id"],
                    "x": START_X + col * HORIZONTAL_SPACING,
                    "y": current_y + row * VERTICAL_SPACING,
                }
            )
        rows = math.ceil(len(components) / COLUMNS)
        current_y += rows * VERTICAL_SPACING + SECTION_GAP

    return nodes


def layout_edges(
    nodes: list[dict[str, Any]], connections: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Build directed edges: in-section flow plus stored connections."""
    edges: list[dict[str, Any]] = []
    for current, following in zip(nodes, nodes[1:]):
        if current["section_id"] == following["section_id"]:
            edges.append(
                {
                    "from": current["id"],
                    "to": following["id"],
                    "kind": "flow",
                    "label": None,
                }
            )

    placed = {node["id"] for node in nodes}
    for connection in connections:
        if (
            connection["from_component_id"] in placed
            and connection["to_component_id"] in placed
        ):
            edges.append(
                {
                    "from": connection["from_component_id"],
                    "to": connection["to_component_id"],
                    "kind": "connection",
                    "label": connection.get("label"),
                }
            )
    return edges


def build_graph(
    sections: list[dict[str, Any]], connections: list[dict[str, Any]]
) -> dict[str, Any]:
    nodes = layout_nodes(sections)
    return {"nodes": nodes, "edges": layout_edges(nodes, connections)}
