"""Table relevance scoring.

Turns the column matches of one table into a confidence that the table
holds data about the subject:

    confidence = 0.6 * mean(column relevance)
               + 0.3 if the table name mentions a subject-ish noun
               + 0.1 if the schema name mentions one

clamped to 1.0. A table with no matched columns always scores 0.0, whatever
its name says.
"""

from __future__ import annotations

from collections.abc import Sequence

from subject_rights.discovery.matcher import ColumnMatch

TABLE_NOUNS: tuple[str, ...] = (
    "user",
    "customer",
    "account",
    "profile",
    "contact",
    "order",
    "transaction",
)
SCHEMA_NOUNS: tuple[str, ...] = ("user", "customer", "crm")

COLUMN_WEIGHT = 0.6
TABLE_NAME_BONUS = 0.3
SCHEMA_NAME_BONUS = 0.1


def _mentions(name: str, nouns: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(noun in lowered for noun in nouns)


def score_table(
    matches: Sequence[ColumnMatch],
    table_name: str,
    schema_name: str,
) -> float:
    """Return the confidence in [0, 1] that a table holds subject data."""
    if not matches:
        return 0.0

    mean_relevance = sum(m.relevance for m in matches) / len(matches)
    confidence = COLUMN_WEIGHT * mean_relevance
    if _mentions(table_name, TABLE_NOUNS):
        confidence += TABLE_NAME_BONUS
    if _mentions(schema_name, SCHEMA_NOUNS):
        confidence += SCHEMA_NAME_BONUS
    return min(confidence, 1.0)
