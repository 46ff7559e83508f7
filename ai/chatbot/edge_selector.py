"""
Picks the next edge to follow out of a node.
"""

import logging
from typing import Dict, List, Optional, Any

from .conditions import ConditionEvaluator
from .models import FlowEdge, EdgeKind

logger = logging.getLogger(__name__)


class EdgeSelector:
    """Selects the next edge by order, condition and default fallback."""

    def __init__(self, evaluator: Optional[ConditionEvaluator] = None):
        self.evaluator = evaluator or ConditionEvaluator()

    def select_next_edge(
        self,
        edges: List[FlowEdge],
        context: Dict[str, Any],
        user_input: str
    ) -> Optional[FlowEdge]:
        """
        Select the edge to follow.

        Edges are tried in ascending ``order``. An edge without a condition is
        taken as soon as it is reached; a conditional edge is taken when its
        condition holds. If nothing matches, the first ``default`` edge is used.

        Returns:
            The selected edge, or None when no edge is admissible.
        """
        candidates = sorted(edges, key=lambda edge: edge.order)

        for edge in candidates:
            if not edge.has_condition:
                return edge
            if self.evaluator.evaluate(edge.condition, context, user_input):
                return edge

        for edge in candidates:
            if edge.kind == EdgeKind.DEFAULT:
                logger.debug(f"No condition matched, using default edge {edge.id}")
                return edge

        return None
