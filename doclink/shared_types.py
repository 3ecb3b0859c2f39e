"""Defines the shared types used across the doclink package.

Documents are plain dictionaries; doclink does not map them onto model classes. The dataclasses here describe the
options accepted by read operations and the result of a bulk insert.
"""
from dataclasses import dataclass, field
from collections.abc import Mapping, Sequence
from typing import Any, TypeAlias

from bson import ObjectId

from doclink.errors import ConnectorError, ValidationError


Document: TypeAlias = dict[str, Any]
"""A schema-less MongoDB document."""

Filter: TypeAlias = Mapping[str, Any]
"""A MongoDB query filter. An `_id` entry may use hex strings in place of ObjectIds."""

IdentifierLike: TypeAlias = ObjectId | str
"""Either a native ObjectId or its 24 character hex string form.

Values of this type are resolved by `doclink.identifiers.to_object_id`, nowhere else.
"""

SortSpec: TypeAlias = str | Mapping[str, int] | Sequence[tuple[str, int]]
"""A field name (ascending), a `{field: direction}` mapping, or a list of `(field, direction)` pairs."""


@dataclass(frozen=True)
class QueryOptions:
    """Shapes the results of `Connector.find_many`.

    Sort is always applied before skip, and skip before limit. Without a sort the order of the documents that are
    skipped and returned is whatever order the server produces.

    Attributes:
        limit: Maximum number of documents to return. `None` returns everything.
        skip: Number of documents to skip before returning results.
        sort: Sort specification, see `SortSpec`.
    """
    limit: int | None = None
    skip: int | None = None
    sort: SortSpec | None = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 0:
            raise ValidationError(f"limit cannot be negative, got {self.limit}", "limit")

        if self.skip is not None and self.skip < 0:
            raise ValidationError(f"skip cannot be negative, got {self.skip}", "skip")

    def sort_pairs(self) -> list[tuple[str, int]]:
        match self.sort:
            case None:
                return []

            case str() as field_name:
                return [(field_name, 1)]

            case Mapping() as mapping:
                return list(mapping.items())

            case _:
                return [tuple(pair) for pair in self.sort]


@dataclass
class BulkFailure:
    """A document that `Connector.create_many` could not insert and the error explaining why."""
    document: Document
    error: ConnectorError


@dataclass
class BulkCreateResult:
    """The outcome of `Connector.create_many`.

    Every input document is in exactly one of the two lists. Inserted documents are copies of the inputs annotated
    with their generated `_id`; failed documents are the caller's original mappings.
    """
    inserted: list[Document] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.inserted) + len(self.failed)
