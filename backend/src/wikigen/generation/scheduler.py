# backend/src/wikigen/generation/scheduler.py
"""Dependency scheduling for planned pages.

Pages form a directed graph with an edge from each dependency to the page
that depends on it. Scheduling happens in two steps shared by both modes:

1. A depth-first pass visits pages in descending priority, marking each page
   "in progress" while its dependencies are visited. Meeting an in-progress
   page means the edge being followed closes a cycle; that edge is dropped
   and recorded as a BrokenEdge. The pass also yields the linear order.
2. For level mode, the remaining acyclic graph is grouped by readiness: level
   k holds every unscheduled page whose dependencies all sit in earlier
   levels.

Dependencies naming a slug that isn't in the plan are treated as satisfied.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

import networkx as nx

from wikigen.generation.models import PlannedPage, WikiPlan

logger = logging.getLogger(__name__)


class ScheduleMode(str, Enum):
    """How pages are ordered for generation."""

    LINEAR = "linear"
    LEVELS = "levels"


@dataclass(frozen=True)
class BrokenEdge:
    """A dependency dropped to break a cycle.

    Attributes:
        from_slug: The page whose dependency was dropped.
        to_slug: The dependency it named.
    """

    from_slug: str
    to_slug: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.from_slug, "to": self.to_slug}


@dataclass(frozen=True)
class ExecutionPlan:
    """Pages grouped into batches that must run in order.

    In level mode each batch is a dependency level whose pages may generate
    concurrently. In linear mode every batch holds exactly one page.

    Attributes:
        mode: The mode that produced this plan.
        batches: Pages grouped for execution, earliest first.
        broken_edges: Cycle edges dropped while scheduling.
        dangling: (page, dependency) pairs naming slugs absent from the plan.
    """

    mode: ScheduleMode
    batches: tuple[tuple[PlannedPage, ...], ...]
    broken_edges: tuple[BrokenEdge, ...] = ()
    dangling: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def order(self) -> list[PlannedPage]:
        """All pages flattened in execution order."""
        return [page for batch in self.batches for page in batch]

    @property
    def levels(self) -> list[list[PlannedPage]]:
        return [list(batch) for batch in self.batches]

    @property
    def total_pages(self) -> int:
        return sum(len(batch) for batch in self.batches)

    def position_of(self, slug: str) -> int:
        """Index of the batch holding slug.

        Raises:
            KeyError: slug is not scheduled.
        """
        for index, batch in enumerate(self.batches):
            if any(page.slug == slug for page in batch):
                return index
        raise KeyError(slug)


def build_dependency_graph(plan: WikiPlan) -> tuple[nx.DiGraph, list[tuple[str, str]]]:
    """Build the dependency graph for a plan.

    Args:
        plan: The wiki plan.

    Returns:
        Tuple of (graph, dangling). Nodes are slugs carrying ``page``,
        ``priority`` and ``index`` attributes; an edge dep -> page means page
        depends on dep. dangling lists (page, dependency) pairs whose
        dependency isn't planned.
    """
    graph = nx.DiGraph()
    for index, page in enumerate(plan):
        graph.add_node(page.slug, page=page, priority=page.priority, index=index)

    dangling: list[tuple[str, str]] = []
    for page in plan:
        for dep in sorted(page.depends_on):
            if dep in graph:
                graph.add_edge(dep, page.slug)
            else:
                dangling.append((page.slug, dep))
    return graph, dangling


def _rank(graph: nx.DiGraph, slug: str) -> tuple[int, int]:
    """Sort key: higher priority first, then plan order."""
    return (-graph.nodes[slug]["priority"], graph.nodes[slug]["index"])


def _break_cycles(graph: nx.DiGraph) -> tuple[list[str], list[BrokenEdge]]:
    """Depth-first pass that linearises the graph and drops cycle-closing edges.

    Returns:
        Tuple of (order, broken_edges); order lists every slug once with
        dependencies before dependents.
    """
    order: list[str] = []
    broken: list[BrokenEdge] = []
    visited: set[str] = set()
    in_progress: set[str] = set()

    def deps_of(slug: str) -> Iterator[str]:
        return iter(sorted(graph.predecessors(slug), key=lambda s: _rank(graph, s)))

    for root in sorted(graph.nodes, key=lambda s: _rank(graph, s)):
        if root in visited:
            continue
        # Explicit stack so long dependency chains do not hit the recursion limit.
        in_progress.add(root)
        stack: list[tuple[str, Iterator[str]]] = [(root, deps_of(root))]
        while stack:
            slug, deps = stack[-1]
            for dep in deps:
                if dep in in_progress:
                    broken.append(BrokenEdge(from_slug=slug, to_slug=dep))
                elif dep not in visited:
                    in_progress.add(dep)
                    stack.append((dep, deps_of(dep)))
                    break
            else:
                stack.pop()
                in_progress.discard(slug)
                visited.add(slug)
                order.append(slug)

    return order, broken


def _group_levels(graph: nx.DiGraph) -> list[list[str]]:
    """Group an acyclic graph into readiness levels."""
    levels: list[list[str]] = []
    scheduled: set[str] = set()
    remaining = set(graph.nodes)

    while remaining:
        ready = [
            slug
            for slug in remaining
            if all(dep in scheduled for dep in graph.predecessors(slug))
        ]
        if not ready:
            # Only reachable if a cycle survived; never loop forever.
            logger.warning(
                f"No page ready in level {len(levels)}; forcing {len(remaining)} remaining pages"
            )
            ready = list(remaining)
        ready.sort(key=lambda s: _rank(graph, s))
        levels.append(ready)
        scheduled.update(ready)
        remaining.difference_update(ready)

    return levels


def schedule(plan: WikiPlan, mode: ScheduleMode | str = ScheduleMode.LEVELS) -> ExecutionPlan:
    """Order a plan's pages so dependencies are generated first.

    Args:
        plan: The wiki plan.
        mode: LEVELS for maximum parallelism, LINEAR for one page at a time.

    Returns:
        ExecutionPlan containing every planned page exactly once.
    """
    mode = ScheduleMode(mode)
    graph, dangling = build_dependency_graph(plan)
    for page_slug, dep in dangling:
        logger.info(f"Ignoring dependency of {page_slug!r} on unplanned page {dep!r}")

    order, broken = _break_cycles(graph)
    for edge in broken:
        logger.warning(
            f"Dependency cycle: dropped dependency of {edge.from_slug!r} on {edge.to_slug!r}"
        )
        graph.remove_edge(edge.to_slug, edge.from_slug)

    if mode is ScheduleMode.LINEAR:
        slug_batches = [[slug] for slug in order]
    else:
        slug_batches = _group_levels(graph)

    batches = tuple(
        tuple(graph.nodes[slug]["page"] for slug in batch) for batch in slug_batches
    )
    logger.info(
        f"Scheduled {len(order)} pages in {len(batches)} "
        f"{'steps' if mode is ScheduleMode.LINEAR else 'levels'}: "
        + " | ".join(", ".join(p.slug for p in batch) for batch in batches)
    )
    return ExecutionPlan(
        mode=mode,
        batches=batches,
        broken_edges=tuple(broken),
        dangling=tuple(dangling),
    )
