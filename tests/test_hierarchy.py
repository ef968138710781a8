from curator.models.entities import EntityRef
from curator.services.query.hierarchy import HierarchyGraph, expand


def r(entity_id: str) -> EntityRef:
    return EntityRef(entity_id, "main")


def chain_graph() -> HierarchyGraph:
    # a > b > c > d, and e is a second parent of c
    return HierarchyGraph.from_parents(
        [
            (r("a"), []),
            (r("b"), [r("a")]),
            (r("c"), [r("b"), r("e")]),
            (r("d"), [r("c")]),
            (r("e"), []),
        ]
    )


def test_depth_zero_returns_roots_only():
    assert chain_graph().expand([r("a")], 0) == {r("a")}


def test_depth_limits_levels():
    graph = chain_graph()
    assert graph.expand([r("a")], 1) == {r("a"), r("b")}
    assert graph.expand([r("a")], 2) == {r("a"), r("b"), r("c")}


def test_unbounded_depth_reaches_fixed_point():
    graph = chain_graph()
    full = graph.expand([r("a")], -1)
    assert full == {r("a"), r("b"), r("c"), r("d")}
    previous: set[EntityRef] = set()
    for depth in range(0, 6):
        expanded = graph.expand([r("a")], depth)
        assert previous <= expanded
        previous = expanded
    assert previous == full


def test_multi_parent_nodes_are_reached_from_either_parent():
    graph = chain_graph()
    assert r("d") in graph.expand([r("e")], -1)
    assert set(graph.parents(r("c"))) == {r("b"), r("e")}


def test_cycles_terminate():
    graph = HierarchyGraph.from_parents([(r("x"), [r("y")]), (r("y"), [r("x")]), (r("z"), [r("z")])])
    assert graph.expand([r("x")], -1) == {r("x"), r("y")}
    assert graph.expand([r("z")], -1) == {r("z")}
    assert graph.ancestors([r("x")]) == {r("x"), r("y")}


def test_unknown_roots_are_kept():
    assert chain_graph().expand([r("nope")], -1) == {r("nope")}
    assert expand([r("nope")], 3, None) == {r("nope")}


def test_ancestors_within_visible_set():
    graph = chain_graph()
    assert graph.ancestors([r("d")]) == {r("a"), r("b"), r("c"), r("e")}
    # The walk stops at nodes outside the allowed set
    assert graph.ancestors([r("d")], within={r("c"), r("a")}) == {r("c")}


def test_resolve_by_bare_id_across_sources():
    graph = HierarchyGraph.from_parents([(EntityRef("1", "main"), []), (EntityRef("1", "backup"), [])])
    assert set(graph.resolve("1")) == {EntityRef("1", "main"), EntityRef("1", "backup")}
    assert graph.resolve("1", "backup") == [EntityRef("1", "backup")]
