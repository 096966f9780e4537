from typing import List, Set, Tuple

from hierarchy import (
    DragState,
    build_tree,
    can_move,
    children_of,
    flatten_tree,
    normalize_servers,
    tree_depth,
    would_create_cycle,
)
from models import CHILD, PARENT, STANDALONE, Server


def _sample() -> List[Server]:
    return [
        Server(ip="hub", priority=10),
        Server(ip="solo", priority=20),
        Server(ip="s1", parent_ip="hub", priority=30),
        Server(ip="s2", parent_ip="hub", priority=40),
    ]


def _edges(forest: List[Server]) -> Tuple[Set[str], Set[Tuple[str, str]]]:
    nodes: Set[str] = set()
    edges: Set[Tuple[str, str]] = set()
    for root in forest:
        nodes.add(root.ip)
        for child in root.children:
            nodes.add(child.ip)
            edges.add((root.ip, child.ip))
    return nodes, edges


def test_build_tree_keeps_order() -> None:
    forest = build_tree(_sample())
    assert [node.ip for node in forest] == ["hub", "solo"]
    assert [child.ip for child in forest[0].children] == ["s1", "s2"]
    assert all(child.server_type == CHILD for child in forest[0].children)


def test_build_tree_does_not_mutate_input() -> None:
    servers = _sample()
    build_tree(servers)
    assert all(server.children == [] for server in servers)


def test_build_tree_promotes_orphans() -> None:
    servers = [Server(ip="lost", parent_ip="gone", server_type=CHILD), Server(ip="a")]
    forest = build_tree(servers)
    assert [node.ip for node in forest] == ["lost", "a"]
    assert forest[0].parent_ip == ""
    assert forest[0].server_type == STANDALONE


def test_build_tree_leaves_root_types_for_flatten() -> None:
    forest = build_tree(_sample())
    assert forest[0].server_type == STANDALONE
    flat = flatten_tree(forest)
    assert flat[0].server_type == PARENT


def test_flatten_assigns_preorder_priorities() -> None:
    forest = build_tree(list(reversed(_sample())))
    flat = flatten_tree(forest)
    assert [server.ip for server in flat] == ["solo", "hub", "s2", "s1"]
    assert [server.priority for server in flat] == [10, 20, 30, 40]
    assert [server.parent_ip for server in flat] == ["", "", "hub", "hub"]
    assert [server.server_type for server in flat] == [STANDALONE, PARENT, CHILD, CHILD]
    assert all(server.children == [] for server in flat)


def test_flatten_follows_dragged_tree() -> None:
    forest = build_tree(_sample())
    hub, solo = forest
    moved = hub.children.pop()
    solo.children.append(moved)
    flat = flatten_tree([solo, hub])
    assert [(server.ip, server.parent_ip, server.server_type) for server in flat] == [
        ("solo", "", PARENT),
        ("s2", "solo", CHILD),
        ("hub", "", PARENT),
        ("s1", "hub", CHILD),
    ]


def test_flatten_demotes_emptied_parent() -> None:
    forest = build_tree(_sample())
    forest[0].children = []
    flat = flatten_tree(forest)
    assert flat[0].server_type == STANDALONE


def test_round_trip_is_stable() -> None:
    first = build_tree(_sample())
    second = build_tree(flatten_tree(first))
    assert _edges(first) == _edges(second)
    priorities = [server.priority for server in normalize_servers(_sample())]
    assert priorities == sorted(priorities)
    assert len(set(priorities)) == len(priorities)
    assert all(priority % 10 == 0 for priority in priorities)


def test_tree_depth() -> None:
    assert tree_depth([]) == 0
    assert tree_depth([Server(ip="a")]) == 0
    assert tree_depth(build_tree(_sample())) == 1
    deep = Server(ip="a", children=[Server(ip="b", children=[Server(ip="c")])])
    assert tree_depth([deep]) == 2


def test_children_of() -> None:
    assert [server.ip for server in children_of(_sample(), "hub")] == ["s1", "s2"]
    assert children_of(_sample(), "") == []


def test_would_create_cycle_rejects_closing_chain() -> None:
    servers = [
        Server(ip="root"),
        Server(ip="mid", parent_ip="root"),
        Server(ip="leaf", parent_ip="mid"),
    ]
    assert would_create_cycle(servers, "root", "leaf") is True
    assert would_create_cycle(servers, "leaf", "root") is False


def test_would_create_cycle_short_circuits() -> None:
    servers = [Server(ip="a")]
    assert would_create_cycle(servers, "a", "") is False
    assert would_create_cycle(servers, "a", "a") is False
    assert would_create_cycle(servers, "a", "missing") is False


def test_would_create_cycle_uses_pre_rename_ip() -> None:
    servers = [Server(ip="old"), Server(ip="kid", parent_ip="old")]
    assert would_create_cycle(servers, "old", "kid") is True
    assert would_create_cycle(servers, "new", "kid") is False


def test_can_move_blocks_parent_into_child_level() -> None:
    forest = build_tree(_sample())
    hub, solo = forest
    assert can_move(hub, target_is_child_level=True) is False
    assert can_move(hub, target_is_child_level=False) is True
    assert can_move(solo, target_is_child_level=True) is True


def test_can_move_tracks_dragging_child() -> None:
    state = DragState()
    forest = build_tree(_sample())
    can_move(forest[0].children[0], target_is_child_level=False, state=state)
    assert state.dragging_child is True
    can_move(forest[1], target_is_child_level=True, state=state)
    assert state.dragging_child is False
