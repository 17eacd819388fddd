"""
Visualization sink (v1).

Fire-and-forget notifications from the builder and the planner. Return values
are never consumed; a sink must not influence planning.
"""
from __future__ import annotations

from typing import Any, Dict, List


class VisualizationSink:
    """No-op base. Subclasses override what they care about."""

    def add_vertex(self, vertex) -> None:
        return None

    def add_edge(self, edge, source_state, target_state) -> None:
        return None

    def set_feedback_edges(self, edges) -> None:
        return None


class RecordingSink(VisualizationSink):
    """Keeps plain-list copies for plotting (see runners.visualize_case)."""

    def __init__(self) -> None:
        self.vertices: List[Dict[str, Any]] = []
        self.edges: List[Dict[str, Any]] = []
        self.feedback: List[Dict[str, Any]] = []

    def add_vertex(self, vertex) -> None:
        self.vertices.append({"id": int(vertex.vid), "x": vertex.state.as_list(), "transient": bool(vertex.transient)})

    def add_edge(self, edge, source_state, target_state) -> None:
        self.edges.append({
            "id": int(edge.eid),
            "source": int(edge.source),
            "target": int(edge.target),
            "from": source_state.as_list(),
            "to": target_state.as_list(),
            "p": float(edge.weight.success_probability),
        })

    def set_feedback_edges(self, edges) -> None:
        self.feedback = [{"id": int(e.eid), "source": int(e.source), "target": int(e.target)} for e in edges]
