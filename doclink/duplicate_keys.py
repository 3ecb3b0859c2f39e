"""Diagnosis of unique index violations.

This is the only module that reads the raw shape of driver errors. Everything the server tells us about a duplicate key
is first collected into a `DuplicateKeyDetails`, either from a single write exception or from one entry of a bulk write
error's `writeErrors`, and the offending field and value are then extracted from that.

Extraction prefers the structured `keyPattern`/`keyValue` metadata that current servers attach to the error and falls
back to parsing the error message:

    E11000 duplicate key error collection: app.users index: email_1 dup key: { email: "alice@example.com" }

When neither source names the field the diagnosis reports `"unknown"`; building a `DuplicateKeyError` never fails.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from doclink.errors import DuplicateKeyError


DUPLICATE_KEY_CODES = frozenset({11000, 11001, 12582})
UNKNOWN = "unknown"

_INDEX_PATTERN = re.compile(r"index: (?P<index>\S+)")
_DUP_KEY_PATTERN = re.compile(r"dup key: \{\s*(?P<field>[^:\s]*)\s*: (?P<value>.*?)\s*\}")
# Index names generated by the server are "<field>_<direction>" joined with "_" for compound indexes.
_INDEX_DIRECTION_PATTERN = re.compile(r"_(?:-?1|2d|2dsphere|text|hashed)(?:_|$)")


@dataclass(frozen=True)
class DuplicateKeyDetails:
    """Everything the server reported about a failed write, in one typed shape."""
    code: int | None
    message: str = ""
    key_pattern: Mapping[str, Any] = field(default_factory=dict)
    key_value: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_duplicate_key(self) -> bool:
        return self.code in DUPLICATE_KEY_CODES

    @classmethod
    def from_write_error(cls, write_error: Mapping[str, Any]) -> "DuplicateKeyDetails":
        """Builds details from one entry of `BulkWriteError.details["writeErrors"]` or a write exception's details."""
        err_info = write_error.get("errInfo") or {}
        return cls(
            code=write_error.get("code"),
            message=write_error.get("errmsg") or "",
            key_pattern=write_error.get("keyPattern") or err_info.get("keyPattern") or {},
            key_value=write_error.get("keyValue") or err_info.get("keyValue") or {},
        )

    @classmethod
    def from_exception(cls, error: BaseException) -> "DuplicateKeyDetails":
        """Builds details from a driver exception such as `pymongo.errors.DuplicateKeyError`."""
        details = getattr(error, "details", None)
        parsed = cls.from_write_error(details if isinstance(details, Mapping) else {})
        return cls(
            code=getattr(error, "code", None) or parsed.code,
            message=parsed.message or str(error),
            key_pattern=parsed.key_pattern,
            key_value=parsed.key_value,
        )


def is_duplicate_key(error: BaseException) -> bool:
    return DuplicateKeyDetails.from_exception(error).is_duplicate_key


def extract_field_info(details: DuplicateKeyDetails) -> tuple[str, Any]:
    """Returns the `(field, value)` that caused the violation, using `"unknown"` for anything that can't be found."""
    field_name, value = UNKNOWN, UNKNOWN
    if details.key_pattern:
        field_name = next(iter(details.key_pattern))

    if field_name in details.key_value:
        value = details.key_value[field_name]
    elif field_name == UNKNOWN and details.key_value:
        field_name, value = next(iter(details.key_value.items()))

    if field_name == UNKNOWN:
        field_name = _field_from_message(details.message)

    if value == UNKNOWN:
        value = _value_from_message(details.message)

    return field_name, value


def diagnose(details: DuplicateKeyDetails, collection: str) -> DuplicateKeyError:
    field_name, value = extract_field_info(details)
    return DuplicateKeyError(collection, field_name, value)


def _field_from_message(message: str) -> str:
    if match := _INDEX_PATTERN.search(message):
        index_name = match["index"]
        if index_name == "_id_":
            return "_id"

        parts = _INDEX_DIRECTION_PATTERN.split(index_name, maxsplit=1)
        if len(parts) > 1 and parts[0]:
            return parts[0]

    if (match := _DUP_KEY_PATTERN.search(message)) and match["field"]:
        return match["field"]

    if match := _INDEX_PATTERN.search(message):
        return match["index"]

    return UNKNOWN


def _value_from_message(message: str) -> Any:
    if match := _DUP_KEY_PATTERN.search(message):
        value = match["value"]
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]

        return value or UNKNOWN

    return UNKNOWN
