"""Heuristic discovery of where a subject's personal data lives."""

from __future__ import annotations

from subject_rights.discovery.locator import DataLocator, DiscoveredTable, DiscoveryPolicy
from subject_rights.discovery.matcher import SUBJECT_PATTERNS, ColumnMatch, match_columns
from subject_rights.discovery.scorer import score_table

__all__ = [
    "SUBJECT_PATTERNS",
    "ColumnMatch",
    "DataLocator",
    "DiscoveredTable",
    "DiscoveryPolicy",
    "match_columns",
    "score_table",
]
