"""Exceptions raised by the connector.

Every public operation either returns a value or raises one of the exceptions defined here. Driver exceptions are never
leaked directly; they are chained onto the connector exception that replaces them so the original message and traceback
are still available through `__cause__`.

Callers match on the exact failure they care about:

```python
try:
    await connector.insert_one("users", {"email": email})
except DuplicateKeyError as error:
    return conflict(f"{error.field} already taken")
```
"""
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    CONNECTION = "connection"
    VALIDATION = "validation"
    INVALID_IDENTIFIER = "invalid_identifier"
    DUPLICATE_KEY = "duplicate_key"
    DOCUMENT_NOT_FOUND = "document_not_found"
    OPERATION_FAILED = "operation_failed"


class ConnectorError(Exception):
    """Base exception for all connector failures."""
    kind: ErrorKind
    code: str

    def __init__(self, *args, collection: str | None = None):
        super().__init__(*args)

        self.collection = collection
        if collection:
            self.add_note(f" - On Collection: {collection!r}")


class DatabaseConnectionError(ConnectorError):
    """Raised when the connector is not connected or could not connect."""
    kind = ErrorKind.CONNECTION
    code = "CONNECTION_ERROR"

    def __init__(self, message: str, uri: str | None = None):
        super().__init__(message)
        self.uri = uri


class ValidationError(ConnectorError):
    """Raised when the caller passes input the connector refuses to send to the database."""
    kind = ErrorKind.VALIDATION
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidIdentifierError(ValidationError):
    """Raised when a value cannot be converted to an ObjectId."""
    kind = ErrorKind.INVALID_IDENTIFIER
    code = "INVALID_OBJECT_ID"

    def __init__(self, value: Any):
        super().__init__(f"Invalid ObjectId format: {value!r}", "_id")
        self.value = value


class DuplicateKeyError(ConnectorError):
    """Raised when a write violates a unique index.

    `field` and `value` are taken from the server's structured error metadata when present and from the error message
    otherwise. Either may be `"unknown"` when neither source identifies them.
    """
    kind = ErrorKind.DUPLICATE_KEY
    code = "DUPLICATE_KEY"

    def __init__(self, collection: str, field: str, value: Any):
        super().__init__(
            f"Duplicate value for unique field {field!r} in collection {collection!r}: {value!r}",
            collection=collection,
        )
        self.field = field
        self.value = value


class DocumentNotFoundError(ConnectorError):
    """Raised when an update or delete targets an _id that does not exist."""
    kind = ErrorKind.DOCUMENT_NOT_FOUND
    code = "DOCUMENT_NOT_FOUND"

    def __init__(self, collection: str, id: Any):
        super().__init__(f"Document not found in collection {collection!r} with _id: {id}", collection=collection)
        self.id = str(id)


class OperationFailedError(ConnectorError):
    """Raised for driver failures that don't map to a more specific exception."""
    kind = ErrorKind.OPERATION_FAILED
    code = "OPERATION_FAILED"

    def __init__(self, operation: str, collection: str, cause: BaseException | str | None = None):
        message = f"Operation {operation!r} failed on collection {collection!r}"
        if cause:
            message = f"{message}: {cause}"

        super().__init__(message, collection=collection)
        self.operation = operation
        self.cause = cause
