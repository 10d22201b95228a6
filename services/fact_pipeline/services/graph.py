"""
Supersession Graph
==================

Arena of rule nodes plus an edge list. Every OVERRIDES edge is inserted
only after a reachability check, so the graph stays acyclic.

Version: 0.1.0
"""

from collections import deque
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.exceptions import CycleDetectedError
from services.fact_pipeline.models import EdgeRelation, RuleEdgeModel


@dataclass
class SupersessionGraph:
    """In-memory view of the rule_edges table."""

    nodes: list[str] = field(default_factory=list)
    index: dict[str, int] = field(default_factory=dict)
    edges: list[tuple[int, int]] = field(default_factory=list)
    adjacency: dict[int, list[int]] = field(default_factory=dict)

    def node(self, rule_id: str) -> int:
        """Arena slot for `rule_id`, allocating one on first use."""
        slot = self.index.get(rule_id)
        if slot is None:
            slot = len(self.nodes)
            self.nodes.append(rule_id)
            self.index[rule_id] = slot
            self.adjacency[slot] = []
        return slot

    def has_edge(self, from_id: str, to_id: str) -> bool:
        if from_id not in self.index or to_id not in self.index:
            return False
        return self.index[to_id] in self.adjacency[self.index[from_id]]

    def reachable(self, source_id: str, target_id: str) -> bool:
        """Whether `target_id` can be reached from `source_id` along edges."""
        if source_id == target_id:
            return True
        if source_id not in self.index or target_id not in self.index:
            return False

        target = self.index[target_id]
        seen = {self.index[source_id]}
        queue = deque(seen)
        while queue:
            current = queue.popleft()
            for nxt in self.adjacency[current]:
                if nxt == target:
                    return True
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return False

    def check_edge(self, from_id: str, to_id: str) -> None:
        """
        Raises:
            CycleDetectedError: If from_id -> to_id would close a cycle
        """
        if self.reachable(to_id, from_id):
            raise CycleDetectedError(from_id, to_id)

    def add_edge(self, from_id: str, to_id: str) -> bool:
        """
        Insert from_id -> to_id.

        Returns:
            False if the edge already existed

        Raises:
            CycleDetectedError: If the edge would close a cycle
        """
        if self.has_edge(from_id, to_id):
            return False
        self.check_edge(from_id, to_id)
        source, target = self.node(from_id), self.node(to_id)
        self.edges.append((source, target))
        self.adjacency[source].append(target)
        return True

    @classmethod
    async def load(cls, session: AsyncSession) -> "SupersessionGraph":
        """Build the graph from persisted OVERRIDES edges."""
        graph = cls()
        result = await session.execute(
            select(RuleEdgeModel.from_rule_id, RuleEdgeModel.to_rule_id).where(
                RuleEdgeModel.relation == EdgeRelation.OVERRIDES
            )
        )
        for from_id, to_id in result.all():
            source, target = graph.node(from_id), graph.node(to_id)
            graph.edges.append((source, target))
            graph.adjacency[source].append(target)
        return graph


async def add_override_edge(
    session: AsyncSession,
    graph: SupersessionGraph,
    winner_id: str,
    loser_id: str,
) -> None:
    """
    Record winner OVERRIDES loser in memory and in the session.

    Raises:
        CycleDetectedError: Nothing is added to the session in that case
    """
    if graph.add_edge(winner_id, loser_id):
        session.add(
            RuleEdgeModel(
                from_rule_id=winner_id,
                to_rule_id=loser_id,
                relation=EdgeRelation.OVERRIDES,
            )
        )
