"""Flat list <-> tree projection for the server hierarchy.

The canonical model is a flat, priority-ordered list of servers linked by
``parent_ip``. The tree is a derived projection used for display and drag and
drop; edits made on it only count once they are flattened back.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from models import CHILD, STANDALONE, Server

logger = logging.getLogger(__name__)

PRIORITY_STEP = 10


def build_tree(servers: Iterable[Server]) -> List[Server]:
    """Project the flat list onto a forest of detached copies.

    Roots keep their input order and each parent's children keep their
    relative input order. A ``parent_ip`` that names no known server is
    cleared and the server becomes a standalone root. Root types are left as
    stored; ``flatten_tree`` is what recomputes them.
    """
    ordered = list(servers)
    nodes: Dict[str, Server] = {}
    for server in ordered:
        nodes[server.ip] = server.copy()

    roots: List[Server] = []
    for server in ordered:
        node = nodes[server.ip]
        if node.parent_ip and node.parent_ip in nodes and node.parent_ip != node.ip:
            node.server_type = CHILD
            nodes[node.parent_ip].children.append(node)
        elif node.parent_ip:
            logger.debug("Orphaned server %s (parent %s missing), promoted to root", node.ip, node.parent_ip)
            node.parent_ip = ""
            node.server_type = STANDALONE
            roots.append(node)
        else:
            roots.append(node)
    return roots


def flatten_tree(forest: Iterable[Server]) -> List[Server]:
    """Pre-order walk of the forest into a fresh canonical list.

    Priorities are reassigned as 10, 20, 30, ... in visit order, ``parent_ip``
    comes from the walk and ``server_type`` from the node's current children.
    """
    flat: List[Server] = []

    def visit(node: Server, parent_ip: str) -> None:
        entry = node.copy()
        entry.parent_ip = parent_ip
        entry.priority = (len(flat) + 1) * PRIORITY_STEP
        entry.server_type = entry.derive_type(bool(node.children))
        flat.append(entry)
        for child in node.children:
            visit(child, node.ip)

    for root in forest:
        visit(root, "")
    return flat


def normalize_servers(servers: Iterable[Server]) -> List[Server]:
    return flatten_tree(build_tree(servers))


def tree_depth(forest: Iterable[Server]) -> int:
    """Number of parent/child edges on the longest root-to-leaf path."""
    deepest = 0
    pending = [(node, 0) for node in forest]
    while pending:
        node, depth = pending.pop()
        deepest = max(deepest, depth)
        pending.extend((child, depth + 1) for child in node.children)
    return deepest


def children_of(servers: Iterable[Server], ip: str) -> List[Server]:
    if not ip:
        return []
    return [server for server in servers if server.parent_ip == ip]


def would_create_cycle(servers: Iterable[Server], server_ip: str, new_parent_ip: str) -> bool:
    """True when making ``new_parent_ip`` the parent of ``server_ip`` closes a loop.

    During a rename, pass the server's old ip, since other servers still point
    at it until the rename cascade runs.
    """
    if not new_parent_ip or new_parent_ip == server_ip:
        return False
    parents: Dict[str, str] = {server.ip: server.parent_ip for server in servers}
    visited = {server_ip}
    current: Optional[str] = new_parent_ip
    while current:
        if current in visited:
            return True
        visited.add(current)
        current = parents.get(current)
    return False


@dataclass
class DragState:
    dragging_child: bool = False


def can_move(dragged: Server, target_is_child_level: bool, state: Optional[DragState] = None) -> bool:
    """Hover check while dragging: a server with children cannot become a child.

    Uniqueness and cycles are checked when the drop is committed, not here.
    """
    if state is not None:
        state.dragging_child = bool(dragged.parent_ip)
    if dragged.children and target_is_child_level:
        return False
    return True
