"""Conversion of caller supplied identifiers to `bson.ObjectId`.

Identifiers reach the connector either as native `ObjectId` values or as 24 character hex strings (URL path
parameters, JSON payloads, etc.). Both forms are resolved here, once, before anything is sent to the database so that a
malformed id fails with an `InvalidIdentifierError` instead of a driver error or a silent miss.
"""
import re
from typing import Any

from bson import ObjectId

from doclink.errors import InvalidIdentifierError
from doclink.shared_types import Filter, IdentifierLike


OBJECT_ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")

# Operators whose operand is a single identifier or a list of identifiers.
_SCALAR_OPERATORS = ("$eq", "$ne")
_LIST_OPERATORS = ("$in", "$nin")


def is_valid_object_id(value: Any) -> bool:
    if isinstance(value, ObjectId):
        return True

    return isinstance(value, str) and OBJECT_ID_PATTERN.fullmatch(value) is not None


def to_object_id(value: IdentifierLike) -> ObjectId:
    """Returns the ObjectId for a native id or a 24 character hex string.

    Raises:
        InvalidIdentifierError: If the value is neither an ObjectId nor a valid hex string.
    """
    if isinstance(value, ObjectId):
        return value

    if not is_valid_object_id(value):
        raise InvalidIdentifierError(value)

    return ObjectId(value)


def normalize_filter(query: Filter | None) -> Filter:
    """Returns a copy of the filter with any `_id` condition converted to ObjectIds.

    Plain values and the `$eq`, `$ne`, `$in` and `$nin` operators are converted. Other operators are left untouched
    since their operands aren't necessarily identifiers.
    """
    if not query:
        return {}

    normalized = dict(query)
    if "_id" not in normalized:
        return normalized

    match normalized["_id"]:
        case str() as raw_id:
            normalized["_id"] = to_object_id(raw_id)

        case dict() as operators:
            normalized["_id"] = _normalize_operators(operators)

    return normalized


def _normalize_operators(operators: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(operators)
    for operator in _SCALAR_OPERATORS:
        if isinstance(normalized.get(operator), str):
            normalized[operator] = to_object_id(normalized[operator])

    for operator in _LIST_OPERATORS:
        if operator in normalized:
            normalized[operator] = [
                to_object_id(value) if isinstance(value, str) else value
                for value in normalized[operator]
            ]

    return normalized
