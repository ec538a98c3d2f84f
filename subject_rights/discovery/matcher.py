"""Subject-column matching.

Decides which columns of a table can hold the subject's identifier, purely
from column names. Each known subject type has an ordered list of name
patterns; a column is tested against the patterns in order and the first
one that matches decides its relevance:

    exact match                1.0
    pattern is prefix/suffix   0.9
    pattern is a substring     0.8

Data types are carried through for reporting but do not affect matching.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

# Ordered: earlier patterns win when a column matches several
SUBJECT_PATTERNS: dict[str, tuple[str, ...]] = {
    "user_id": ("user_id", "id", "customer_id", "account_id", "member_id"),
    "email": ("email", "email_address", "user_email", "contact_email"),
    "customer_id": ("customer_id", "client_id", "account_id", "user_id"),
    "phone": ("phone", "phone_number", "mobile", "telephone", "cell_phone"),
    "name": ("name", "first_name", "last_name", "full_name", "username"),
}

EXACT_MATCH = 1.0
AFFIX_MATCH = 0.9
SUBSTRING_MATCH = 0.8


@dataclass(frozen=True)
class ColumnMatch:
    """A column judged to hold the subject identifier."""

    column_name: str
    data_type: str
    relevance: float
    pattern: str


def patterns_for(subject_type: str) -> tuple[str, ...]:
    """Return the name patterns for a subject type.

    Unknown subject types fall back to the subject type itself, so
    a request for "loyalty_number" still finds a loyalty_number column.
    """
    key = subject_type.strip().lower()
    return SUBJECT_PATTERNS.get(key, (key,))


def score_column(column_name: str, pattern: str) -> float:
    """Relevance of one column name against one pattern, 0.0 if unrelated."""
    name = column_name.lower()
    if name == pattern:
        return EXACT_MATCH
    if name.startswith(pattern) or name.endswith(pattern):
        return AFFIX_MATCH
    if pattern in name:
        return SUBSTRING_MATCH
    return 0.0


def match_columns(
    subject_type: str,
    columns: Iterable[tuple[str, str]],
) -> list[ColumnMatch]:
    """Return the columns of one table that are relevant to *subject_type*.

    Args:
        subject_type: Identifier discriminator (email, user_id, ...)
        columns: (column_name, data_type) pairs in catalog order

    Returns:
        Matches in input order. Duplicate column names (compared
        case-insensitively) keep only their first occurrence.
    """
    patterns = patterns_for(subject_type)
    seen: set[str] = set()
    matches: list[ColumnMatch] = []

    for column_name, data_type in columns:
        key = column_name.lower()
        if key in seen:
            continue
        seen.add(key)

        for pattern in patterns:
            relevance = score_column(column_name, pattern)
            if relevance > 0.0:
                matches.append(
                    ColumnMatch(
                        column_name=column_name,
                        data_type=data_type,
                        relevance=relevance,
                        pattern=pattern,
                    )
                )
                break

    return matches
