"""
Composable queries over a document store collection.

The store only understands equality and ordering comparisons, so:

- a prefix search is the half-open range [p, p[:-1] + successor(p[-1])),
  which holds exactly the strings that start with p under code point order
  (the same order MongoDB uses for UTF-8 strings);
- a substring search downloads the constrained result set and matches it
  client side. That cost grows with the collection, not with the number of
  matches.
"""

import logging
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from converters import DocumentConverter
from database import CollectionPath, Constraint, DocumentRef, DocumentStore
from errors import InvalidQueryError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CODE_POINT = 0x10FFFF
SURROGATE_START = 0xD800
SURROGATE_END = 0xE000


def successor(char: str) -> str:
    """Next storable character after `char` in code point order."""
    code = ord(char) + 1
    if SURROGATE_START <= code < SURROGATE_END:
        code = SURROGATE_END
    if code > MAX_CODE_POINT:
        raise InvalidQueryError(f"No character sorts after {char!r}; cannot build a prefix range")
    return chr(code)


def prefix_range(prefix: str) -> Tuple[str, Optional[str]]:
    """
    Bounds for a starts-with query. The upper bound is None for the empty
    prefix, which every string satisfies.
    """
    if not prefix:
        return "", None
    return prefix, prefix[:-1] + successor(prefix[-1])


class QueryBuilder(Generic[T]):
    """
    An immutable query: every where_* call returns a new builder with the
    extra constraints AND-ed on, so a base query can be shared and refined.
    """

    def __init__(
        self,
        store: DocumentStore,
        path: CollectionPath,
        converter: DocumentConverter[T],
        constraints: Tuple[Constraint, ...] = (),
        limit: Optional[int] = None,
        skip: Optional[int] = None,
    ):
        self.store = store
        self.path = path
        self.converter = converter
        self.constraints = constraints
        self.limit = limit
        self.skip = skip

    def _check_field(self, field: str) -> None:
        if field not in self.converter.fields:
            raise InvalidQueryError(
                f"{self.converter.model.__name__} has no field {field!r} to query on"
            )

    def _refine(self, constraints: List[Constraint], limit: Optional[int], skip: Optional[int]) -> "QueryBuilder[T]":
        return QueryBuilder(
            self.store,
            self.path,
            self.converter,
            self.constraints + tuple(constraints),
            limit or self.limit,
            skip or self.skip,
        )

    def where_equal(
        self, fields: Mapping[str, Any], limit: Optional[int] = None, skip: Optional[int] = None
    ) -> "QueryBuilder[T]":
        constraints = []
        for field, value in fields.items():
            if value is None:
                continue
            self._check_field(field)
            constraints.append(Constraint(field, "==", value))
        return self._refine(constraints, limit, skip)

    def where_starts_with(
        self, fields: Mapping[str, Optional[str]], limit: Optional[int] = None, skip: Optional[int] = None
    ) -> "QueryBuilder[T]":
        constraints = []
        for field, value in fields.items():
            if value is None:
                continue
            self._check_field(field)
            start, end = prefix_range(str(value))
            constraints.append(Constraint(field, ">=", start))
            if end is not None:
                constraints.append(Constraint(field, "<", end))
        return self._refine(constraints, limit, skip)

    def get_results(self) -> List[T]:
        docs = self.store.query(self.path, self.constraints, limit=self.limit, skip=self.skip)
        return [self.converter.from_document(doc, DocumentRef(self.path, doc.get("id"))) for doc in docs]

    def first(self) -> Optional[T]:
        results = self.get_results()
        return results[0] if results else None

    def either_contains(
        self, fields: Mapping[str, Any], limit: Optional[int] = None, skip: Optional[int] = None
    ) -> List[T]:
        """
        Records of this query whose field contains the needle, for any of the
        given fields (OR). Each record appears once, in order of first match;
        skip/limit apply to that merged list.
        """
        needles = {field: str(value) for field, value in fields.items() if value is not None}
        for field in needles:
            self._check_field(field)

        records = self.get_results()
        matches: Dict[str, T] = {}
        for field, needle in needles.items():
            for record in records:
                value = getattr(record, field, None)
                if isinstance(value, str) and needle in value:
                    matches.setdefault(record.id, record)

        logger.debug(
            "Contains search on %s matched %d of %d records", "/".join(self.path), len(matches), len(records)
        )
        start = skip or 0
        end = start + limit if limit else None
        return list(matches.values())[start:end]
