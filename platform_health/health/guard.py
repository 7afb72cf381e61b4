"""Checks applied to caller-supplied custom queries before they reach the content store.

Usage:
    guard = QueryGuard(max_length=2000)
    guard.check(query)  # raises QueryRejectedError

The content store client only talks to the read-only query endpoint, so a
query can never write. The guard rejects text that asks for a mutation
(a sign the caller expects a write to happen) and unfiltered whole-dataset
selections, which are the cheap way to exhaust the query layer.
"""

import re

from ..exceptions import QueryRejectedError

_MUTATION_CALL = re.compile(
    r"\b(create|createOrReplace|createIfNotExists|delete|patch|mutate|mutations)\s*\(",
    re.IGNORECASE,
)
_MUTATION_KEY = re.compile(r"[\"']?\bmutations\b[\"']?\s*:", re.IGNORECASE)
_UNFILTERED_DATASET = re.compile(r"^\s*\*\s*(\{|\||\[\s*\]|$)")


class QueryGuard:
    def __init__(self, max_length: int = 2000, read_only: bool = True):
        self.max_length = max_length
        self.read_only = read_only

    def check(self, query: str) -> str:
        """Return the query unchanged or raise QueryRejectedError."""
        if not isinstance(query, str) or not query.strip():
            raise QueryRejectedError("custom_query must be a non-empty string")
        if len(query) > self.max_length:
            raise QueryRejectedError(
                f"custom_query is {len(query)} characters, limit is {self.max_length}"
            )
        if not self.read_only:
            return query

        if _MUTATION_CALL.search(query) or _MUTATION_KEY.search(query):
            raise QueryRejectedError("custom_query looks like a mutation; only reads are allowed")
        if _UNFILTERED_DATASET.search(query):
            raise QueryRejectedError(
                "custom_query selects the whole dataset; add a filter or a slice"
            )
        return query
