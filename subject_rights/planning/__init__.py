"""Deletion planning: table sequencing, risk gating and plan assembly."""

from __future__ import annotations

from subject_rights.planning.planner import DeletionPlan, DeletionPlanner, PlannedTable
from subject_rights.planning.risk import RiskAssessment, assess_deletion_risk
from subject_rights.planning.sequencer import DependencyGraph, GraphNode

__all__ = [
    "DeletionPlan",
    "DeletionPlanner",
    "DependencyGraph",
    "GraphNode",
    "PlannedTable",
    "RiskAssessment",
    "assess_deletion_risk",
]
