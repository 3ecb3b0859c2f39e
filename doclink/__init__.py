"""doclink Package.

doclink is an asynchronous connection-and-operation manager for MongoDB. It sits between application code and the
Motor driver and centralizes the "talk to the database" concerns:

-   **Connection Lifecycle**: Connect with retry and exponential backoff, reconnect, and close through a single
    `Connector`.
-   **Identifier Handling**: `_id` values may be passed as ObjectIds or 24 character hex strings anywhere; malformed
    ids are rejected before they reach the database.
-   **CRUD and Bulk Operations**: Plain dictionary documents in and out, with partial-failure reporting for bulk
    inserts and a guard against deleting a whole collection by accident.
-   **Typed Errors**: Driver failures are translated into a small exception hierarchy (`doclink.errors`) carrying
    structured fields such as the duplicated field and value.

Note:
This `__init__.py` file uses a custom `__getattr__` to lazily load submodules and the exported symbols, so importing
the package doesn't import the driver until it's needed.
"""
import importlib
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from doclink.connector import Connector, ConnectionState
    from doclink.connector_context import get_connector, use_connector
    from doclink.errors import (
        ConnectorError,
        DatabaseConnectionError,
        DocumentNotFoundError,
        DuplicateKeyError,
        ErrorKind,
        InvalidIdentifierError,
        OperationFailedError,
        ValidationError,
    )
    from doclink.identifiers import is_valid_object_id, to_object_id
    from doclink.retry import RetryOptions, with_retry
    from doclink.settings import ConnectorSettings
    from doclink.shared_types import BulkCreateResult, BulkFailure, QueryOptions

__lookup = {
    "Connector": "doclink.connector",
    "ConnectionState": "doclink.connector",
    "get_connector": "doclink.connector_context",
    "use_connector": "doclink.connector_context",
    "ConnectorError": "doclink.errors",
    "DatabaseConnectionError": "doclink.errors",
    "DocumentNotFoundError": "doclink.errors",
    "DuplicateKeyError": "doclink.errors",
    "ErrorKind": "doclink.errors",
    "InvalidIdentifierError": "doclink.errors",
    "OperationFailedError": "doclink.errors",
    "ValidationError": "doclink.errors",
    "is_valid_object_id": "doclink.identifiers",
    "to_object_id": "doclink.identifiers",
    "RetryOptions": "doclink.retry",
    "with_retry": "doclink.retry",
    "ConnectorSettings": "doclink.settings",
    "BulkCreateResult": "doclink.shared_types",
    "BulkFailure": "doclink.shared_types",
    "QueryOptions": "doclink.shared_types",
}

__all__ = list(__lookup.keys())

__modules = set()

for _path in Path(__file__).parent.iterdir():
    if _path.name.startswith("_"):
        continue

    if not _path.is_dir() and _path.suffix != ".py":
        continue

    __modules.add(_path.stem)


def __getattr__(name):
    """Lazily loads submodules and the symbols listed in `__all__`.

    Raises:
        ImportError: If a symbol listed in `__all__` cannot be imported from its module.
        AttributeError: If the name is neither an exported symbol nor a submodule.
    """
    if name in __lookup:
        try:
            module = importlib.import_module(__lookup[name])
        except Exception as e:
            raise ImportError(f"Failed to import {name} from {__lookup[name]}: {e}") from e

        return getattr(module, name)

    if name in __modules:
        return importlib.import_module(f"doclink.{name}")

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
