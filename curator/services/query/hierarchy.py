from collections.abc import Iterable

from loguru import logger

from curator.models.entities import EntityRef


class HierarchyGraph:
    """
    Parent/child DAG over tags, studios or collections.

    Nodes are interned into an arena and edges are stored as index adjacency
    lists. Multi-parent nodes, self-loops and cycles are tolerated; every
    traversal carries a visited set.
    """

    def __init__(self, nodes: Iterable[EntityRef] = (), edges: Iterable[tuple[EntityRef, EntityRef]] = ()):
        self._nodes: list[EntityRef] = []
        self._index: dict[EntityRef, int] = {}
        self._by_id: dict[str, list[int]] = {}
        self._children: list[list[int]] = []
        self._parents: list[list[int]] = []
        for ref in nodes:
            self._intern(ref)
        dangling = 0
        for parent, child in edges:
            if parent not in self._index:
                dangling += 1
            p = self._intern(parent)
            c = self._intern(child)
            if c not in self._children[p]:
                self._children[p].append(c)
                self._parents[c].append(p)
        if dangling:
            logger.debug(f"Hierarchy has {dangling} edges to parents outside the catalog")

    @classmethod
    def from_parents(cls, entries: Iterable[tuple[EntityRef, Iterable[EntityRef]]]) -> "HierarchyGraph":
        """Build from ``(node, parents)`` pairs as the catalog reports them."""
        entries = list(entries)
        edges = [(parent, node) for node, parents in entries for parent in parents]
        return cls(nodes=(node for node, _ in entries), edges=edges)

    def _intern(self, ref: EntityRef) -> int:
        idx = self._index.get(ref)
        if idx is None:
            idx = len(self._nodes)
            self._nodes.append(ref)
            self._index[ref] = idx
            self._by_id.setdefault(ref.id, []).append(idx)
            self._children.append([])
            self._parents.append([])
        return idx

    def __contains__(self, ref: EntityRef) -> bool:
        return ref in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def resolve(self, entity_id: str, instance_id: str | None = None) -> list[EntityRef]:
        """All nodes carrying ``entity_id``, optionally restricted to one source."""
        if instance_id is not None:
            ref = EntityRef(entity_id, instance_id)
            return [ref] if ref in self._index else []
        return [self._nodes[i] for i in self._by_id.get(entity_id, [])]

    def children(self, ref: EntityRef) -> list[EntityRef]:
        idx = self._index.get(ref)
        if idx is None:
            return []
        return [self._nodes[i] for i in self._children[idx]]

    def parents(self, ref: EntityRef) -> list[EntityRef]:
        idx = self._index.get(ref)
        if idx is None:
            return []
        return [self._nodes[i] for i in self._parents[idx]]

    def expand(self, roots: Iterable[EntityRef], depth: int) -> set[EntityRef]:
        """
        Return the roots plus their descendants up to ``depth`` edge-hops.

        Args:
            roots: Starting nodes. Roots unknown to the graph are returned as-is.
            depth: 0 for the roots only, N for N levels of children, -1 for all.

        Returns:
            The expanded node set. Ancestors are never included.
        """
        result = set(roots)
        if depth == 0:
            return result

        visited: set[int] = set()
        frontier: list[int] = []
        for ref in result:
            idx = self._index.get(ref)
            if idx is not None and idx not in visited:
                visited.add(idx)
                frontier.append(idx)

        level = 0
        while frontier and (depth < 0 or level < depth):
            next_frontier: list[int] = []
            for idx in frontier:
                for child in self._children[idx]:
                    if child not in visited:
                        visited.add(child)
                        next_frontier.append(child)
            frontier = next_frontier
            level += 1

        result.update(self._nodes[i] for i in visited)
        return result

    def ancestors(self, refs: Iterable[EntityRef], within: set[EntityRef] | None = None) -> set[EntityRef]:
        """
        Every node reachable upward from ``refs`` through parent edges.

        With ``within``, the walk only passes through (and only returns) nodes
        in that set.
        """
        allowed = None if within is None else {self._index[r] for r in within if r in self._index}
        start = {self._index[r] for r in refs if r in self._index}
        visited: set[int] = set(start)
        frontier = list(start)
        found: set[int] = set()
        while frontier:
            next_frontier: list[int] = []
            for idx in frontier:
                for parent in self._parents[idx]:
                    if allowed is not None and parent not in allowed:
                        continue
                    found.add(parent)
                    if parent not in visited:
                        visited.add(parent)
                        next_frontier.append(parent)
            frontier = next_frontier
        return {self._nodes[i] for i in found}


def expand(root_ids: Iterable[EntityRef], depth: int, graph: HierarchyGraph | None) -> set[EntityRef]:
    """Expand ``root_ids`` through ``graph``; without a graph only the roots are returned."""
    if graph is None:
        return set(root_ids)
    return graph.expand(root_ids, depth)
