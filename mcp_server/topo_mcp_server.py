"""
Optional: MCP server exposing topology-editor checks as tools.

Useful when an assistant or another tool produces element JSON for the
editor and wants it checked (or wants the next free interface name) before
handing it to the host.

Run (example):
  pip install -e .
  python mcp_server/topo_mcp_server.py

Then connect an MCP client to:
  http://localhost:8000/mcp
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import logging

from mcp.server.fastmcp import FastMCP

from topoedit.endpoints import next_endpoint
from topoedit.model import ElementModel, UnknownElementError
from topoedit.settings import EditorSettings
from topoedit.validate import validate_elements

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "Topology Editor MCP Server",
    instructions="Tools for validating topology-editor element JSON and allocating interface names.",
    stateless_http=True,
    json_response=True,
)


@mcp.tool()
def validate_topology_elements(elements: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate a list of editor elements; returns problems list."""
    problems = validate_elements(elements)
    return {"ok": len(problems) == 0, "problems": problems}


@mcp.tool()
def next_interface_name(
    elements: List[Dict[str, Any]],
    node_id: str,
    patterns: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Lowest free interface name on ``node_id`` given the links in ``elements``.

    ``patterns`` overrides the built-in kind -> pattern table (e.g. {"linux": "eth{n}"}).
    """
    settings = EditorSettings.from_env(overrides=patterns)
    model = ElementModel()
    model.load(elements)
    try:
        name = next_endpoint(model, node_id, settings)
    except UnknownElementError as e:
        return {"ok": False, "error": str(e)}
    kind = model.nodes[node_id].data.extraData.kind or "default"
    return {"ok": True, "node": node_id, "kind": kind, "interface": name}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    # Streamable HTTP transport is recommended in the MCP SDK docs.
    mcp.run(transport="streamable-http")
