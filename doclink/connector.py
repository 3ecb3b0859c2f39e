"""The connector is the interface between application code and MongoDB.

It owns the connection (connect with retry, close, reconnect), normalizes identifiers before they reach the driver, and
exposes CRUD, bulk and index operations over plain dictionaries. Driver exceptions don't escape it: each operation
either returns its result or raises one of the exceptions in `doclink.errors`, with the driver exception chained as the
cause.

Example:
    ```python
    from doclink import Connector

    connector = Connector()
    await connector.connect("mongodb://localhost:27017", "app")

    alice = await connector.insert_one("users", {"name": "Alice", "age": 30})
    alice = await connector.update_one("users", {"_id": str(alice["_id"]), "age": 31})

    await connector.close()
    ```

The connector does not serialize calls. Any number of tasks may use one connector concurrently; the driver's own pool
handles that. Every operation checks the connection state once, when it is called, and uses the handles it found then.
Calling `connect` or `close` while operations are in flight can make those operations fail with a
`DatabaseConnectionError` or `OperationFailedError`.
"""
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable, Iterator, Mapping, Sequence

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import BulkWriteError

from doclink import bulk, duplicate_keys
from doclink.errors import (
    ConnectorError,
    DatabaseConnectionError,
    DocumentNotFoundError,
    OperationFailedError,
    ValidationError,
)
from doclink.identifiers import normalize_filter, to_object_id
from doclink.retry import RetryOptions, with_retry
from doclink.settings import ConnectorSettings
from doclink.shared_types import BulkCreateResult, Document, Filter, QueryOptions


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

ClientFactory = Callable[..., AsyncIOMotorClient]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@contextmanager
def _translate_failures(operation: str, collection: str) -> Iterator[None]:
    """Replaces driver exceptions raised in the block with connector exceptions.

    Unique index violations become `DuplicateKeyError`, everything else becomes `OperationFailedError`. Connector
    exceptions pass through unchanged.
    """
    try:
        yield
    except ConnectorError:
        raise
    except Exception as error:
        details = duplicate_keys.DuplicateKeyDetails.from_exception(error)
        if details.is_duplicate_key:
            raise duplicate_keys.diagnose(details, collection) from error

        raise OperationFailedError(operation, collection, error) from error


def _required_id(document: Mapping[str, Any], operation: str) -> Any:
    raw_id = document.get("_id")
    if raw_id is None or raw_id == "":
        raise ValidationError(f"_id is required for {operation}", "_id")

    return raw_id


def _prepared_for_insert(document: Mapping[str, Any]) -> Document:
    """Copies a document for insertion, resolving a caller supplied `_id` to an ObjectId."""
    prepared = dict(document)
    if prepared.get("_id") is not None:
        prepared["_id"] = to_object_id(prepared["_id"])

    return prepared


class Connector:
    """Manages a MongoDB connection and the operations run over it.

    Construct one connector per application and pass it to the code that needs it. Independent connectors share
    nothing, which is what tests should use for isolation.

    Attributes:
        state: The current `ConnectionState`
        uri: The URI of the current or most recent connection, `None` before the first connect
    """
    def __init__(self, client_factory: ClientFactory | None = None):
        """
        Args:
            client_factory: Callable that creates the driver client from a URI and keyword options. Defaults to
                `AsyncIOMotorClient`.
        """
        self._client_factory: ClientFactory = client_factory or AsyncIOMotorClient
        self._client: AsyncIOMotorClient | None = None
        self._database: AsyncIOMotorDatabase | None = None
        self.state = ConnectionState.DISCONNECTED
        self.uri: str | None = None

    def __repr__(self):
        return f"<{type(self).__name__} state={self.state.value} database={self.database_name!r}>"

    # ---------------------------------------- #
    # Connection Management                    #
    # ---------------------------------------- #
    async def connect(
        self,
        uri: str,
        database_name: str | None = None,
        retry: RetryOptions | None = None,
        **client_options: Any,
    ):
        """Connects to MongoDB, replacing any existing connection.

        The existing connection is always closed first, so a previously selected database is gone even when the new
        connection fails. Each attempt creates a client and pings the server; attempts are retried with exponential
        backoff according to `retry`.

        Args:
            uri: MongoDB connection URI (e.g. "mongodb://localhost:27017")
            database_name: Optional database to select once connected
            retry: Retry configuration, 3 attempts starting at 100ms and capped at 5s if omitted
            **client_options: Passed through to the client factory

        Raises:
            DatabaseConnectionError: If every attempt failed. The last attempt's exception is the cause.
        """
        await self.close()

        async def attempt() -> AsyncIOMotorClient:
            logger.debug("Connecting to %s", uri)
            client = self._client_factory(uri, **client_options)
            try:
                await client.admin.command("ping")
            except Exception:
                client.close()
                raise

            return client

        try:
            client = await with_retry(attempt, retry)
        except Exception as error:
            raise DatabaseConnectionError(f"Failed to connect to MongoDB after retries: {error}", uri) from error

        self._client = client
        self.uri = uri
        self.state = ConnectionState.CONNECTED
        logger.debug("Connected to %s", uri)

        if database_name:
            self.select_database(database_name)

    async def connect_with(self, settings: ConnectorSettings | None = None):
        """Connects using a `ConnectorSettings`, the defaults if omitted."""
        settings = settings or ConnectorSettings()
        await self.connect(settings.uri, settings.database_name, settings.retry, **settings.client_options())

    async def close(self):
        """Closes the connection. Safe to call when already disconnected."""
        client, self._client = self._client, None
        self._database = None
        self.state = ConnectionState.DISCONNECTED
        if client is not None:
            client.close()
            logger.debug("Closed connection to %s", self.uri)

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._client is not None

    def select_database(self, name: str):
        """Selects the database used by all following operations.

        Raises:
            DatabaseConnectionError: If not connected.
        """
        self._assert_connected()
        self._database = self._client[name]

    @property
    def database_name(self) -> str | None:
        return self._database.name if self._database is not None else None

    def current_database(self) -> AsyncIOMotorDatabase:
        """Returns the selected Motor database for operations the connector doesn't cover.

        Raises:
            DatabaseConnectionError: If no database is selected.
        """
        if self._database is None:
            raise DatabaseConnectionError("Database not selected. Call select_database() first.", self.uri)

        return self._database

    def collection_handle(self, name: str) -> AsyncIOMotorCollection:
        """Returns a Motor collection from the selected database for operations the connector doesn't cover.

        Raises:
            DatabaseConnectionError: If no database is selected.
        """
        return self.current_database()[name]

    def _assert_connected(self):
        if not self.is_connected():
            raise DatabaseConnectionError("MongoDB client is not connected. Call connect() first.", self.uri)

    def _collection(self, name: str) -> AsyncIOMotorCollection:
        self._assert_connected()
        return self.collection_handle(name)

    # ---------------------------------------- #
    # Reads                                    #
    # ---------------------------------------- #
    async def find_one(self, collection: str, query: Filter | None = None) -> Document | None:
        """Returns the first document matching the filter, `None` if nothing matches."""
        handle = self._collection(collection)
        query = normalize_filter(query)
        with _translate_failures("find_one", collection):
            return await handle.find_one(query)

    async def find_many(
        self,
        collection: str,
        query: Filter | None = None,
        options: QueryOptions | None = None,
    ) -> list[Document]:
        """Returns every document matching the filter, shaped by the query options.

        Sort is applied first, then skip, then limit. Returns an empty list when nothing matches.
        """
        handle = self._collection(collection)
        query = normalize_filter(query)
        with _translate_failures("find_many", collection):
            return await self._find_cursor(handle, query, options or QueryOptions()).to_list(length=None)

    def iter_many(
        self,
        collection: str,
        query: Filter | None = None,
        options: QueryOptions | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> AsyncIterator[Document]:
        """Iterates the matching documents, fetching them from the server `batch_size` at a time.

        The connection state and the filter are checked immediately, not when iteration starts.

        Example:
            ```python
            async for user in connector.iter_many("users", {"active": True}):
                ...
            ```
        """
        if batch_size < 1:
            raise ValidationError(f"batch_size must be at least 1, got {batch_size}", "batch_size")

        handle = self._collection(collection)
        query = normalize_filter(query)
        cursor = self._find_cursor(handle, query, options or QueryOptions()).batch_size(batch_size)
        return self._iterate_cursor(cursor, collection)

    async def count(self, collection: str, query: Filter | None = None) -> int:
        handle = self._collection(collection)
        query = normalize_filter(query)
        with _translate_failures("count", collection):
            return await handle.count_documents(query)

    async def exists(self, collection: str, query: Filter) -> bool:
        """Checks whether any document matches the filter.

        Only the `_id` of at most one document is transferred, making this cheaper than `find_one`.
        """
        handle = self._collection(collection)
        query = normalize_filter(query)
        with _translate_failures("exists", collection):
            return await handle.find_one(query, projection={"_id": 1}) is not None

    @staticmethod
    def _find_cursor(handle: AsyncIOMotorCollection, query: Filter, options: QueryOptions):
        cursor = handle.find(query)
        if sort := options.sort_pairs():
            cursor = cursor.sort(sort)

        if options.skip is not None:
            cursor = cursor.skip(options.skip)

        if options.limit is not None:
            cursor = cursor.limit(options.limit)

        return cursor

    @staticmethod
    async def _iterate_cursor(cursor, collection: str) -> AsyncIterator[Document]:
        with _translate_failures("iter_many", collection):
            async for document in cursor:
                yield document

    # ---------------------------------------- #
    # Single Document Writes                   #
    # ---------------------------------------- #
    async def insert_one(self, collection: str, document: Mapping[str, Any]) -> Document:
        """Inserts a document and returns a copy of it with its `_id`.

        A caller supplied `_id` may be an ObjectId or its hex string and is stored as an ObjectId. Without one the
        driver generates it. The caller's mapping is not modified.

        Raises:
            InvalidIdentifierError: If a supplied `_id` is not a valid ObjectId.
            DuplicateKeyError: If the document violates a unique index.
            OperationFailedError: If the write wasn't acknowledged or failed for any other reason. The driver
                exception is not raised itself; it is available as the `__cause__` of this error.
        """
        handle = self._collection(collection)
        prepared = _prepared_for_insert(document)
        with _translate_failures("insert_one", collection):
            result = await handle.insert_one(prepared)

        if not result.acknowledged:
            raise OperationFailedError("insert_one", collection, "write was not acknowledged")

        prepared["_id"] = result.inserted_id
        return prepared

    async def update_one(self, collection: str, document: Mapping[str, Any]) -> Document:
        """Sets the given fields on the document with the given `_id` and returns the updated document.

        Only the fields present in `document` change. `_id` may be an ObjectId or its hex string.

        Raises:
            ValidationError: If `_id` is missing or empty, or no other fields are given.
            InvalidIdentifierError: If `_id` is not a valid ObjectId.
            DocumentNotFoundError: If no document has the `_id`.
            DuplicateKeyError: If the update violates a unique index.
            OperationFailedError: If the update failed for any other reason.
        """
        handle = self._collection(collection)
        raw_id = _required_id(document, "update_one")
        object_id = to_object_id(raw_id)
        fields = {name: value for name, value in document.items() if name != "_id"}
        if not fields:
            raise ValidationError("update_one requires at least one field besides _id", "document")

        with _translate_failures("update_one", collection):
            updated = await handle.find_one_and_update(
                {"_id": object_id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )

        if updated is None:
            raise DocumentNotFoundError(collection, raw_id)

        return updated

    async def delete_one(self, collection: str, document: Mapping[str, Any]) -> bool:
        """Deletes the document with the given `_id`. Returns `True`, the only successful outcome.

        Raises:
            ValidationError: If `_id` is missing or empty.
            InvalidIdentifierError: If `_id` is not a valid ObjectId.
            DocumentNotFoundError: If no document has the `_id`.
            OperationFailedError: If the delete failed.
        """
        handle = self._collection(collection)
        raw_id = _required_id(document, "delete_one")
        object_id = to_object_id(raw_id)
        with _translate_failures("delete_one", collection):
            result = await handle.delete_one({"_id": object_id})

        if result.deleted_count != 1:
            raise DocumentNotFoundError(collection, raw_id)

        return True

    # ---------------------------------------- #
    # Bulk Operations                          #
    # ---------------------------------------- #
    async def create_many(self, collection: str, documents: Sequence[Mapping[str, Any]]) -> BulkCreateResult:
        """Inserts many documents, allowing some of them to fail.

        The insert is unordered so one failing document doesn't stop the rest. Each failure is reported with the
        document that caused it, as a `DuplicateKeyError` when it violated a unique index.

        Raises:
            ValidationError: If `documents` is empty, or if every document failed. In the latter case each failure is
                listed in the exception's notes.
            InvalidIdentifierError: If any document has an `_id` that is not a valid ObjectId. Nothing is inserted.
            OperationFailedError: If the insert failed as a whole.
        """
        handle = self._collection(collection)
        if not documents:
            raise ValidationError("create_many: documents cannot be empty", "documents")

        originals = list(documents)
        prepared = [_prepared_for_insert(document) for document in originals]
        write_errors: list[Mapping[str, Any]] = []
        bulk_error: BulkWriteError | None = None
        try:
            await handle.insert_many(prepared, ordered=False)
        except BulkWriteError as error:
            write_errors = (error.details or {}).get("writeErrors") or []
            if not write_errors:
                raise OperationFailedError("create_many", collection, error) from error

            bulk_error = error
        except Exception as error:
            raise OperationFailedError("create_many", collection, error) from error

        result = bulk.reconcile_insert_many(collection, originals, prepared, write_errors)
        if result.failed and not result.inserted:
            error = ValidationError(f"All {len(originals)} documents failed to insert", "documents")
            for failure in result.failed:
                error.add_note(f" - {failure.error}")

            raise error from bulk_error

        return result

    async def update_many(self, collection: str, query: Filter, update: Mapping[str, Any]) -> int:
        """Applies update operators to every matching document and returns how many were modified.

        Raises:
            ValidationError: If `update` is empty or contains anything other than update operators.
        """
        handle = self._collection(collection)
        if not update:
            raise ValidationError("update_many requires a non-empty update", "update")

        if not all(key.startswith("$") for key in update):
            raise ValidationError("update_many only accepts update operators such as $set or $inc", "update")

        query = normalize_filter(query)
        with _translate_failures("update_many", collection):
            result = await handle.update_many(query, dict(update))

        return result.modified_count

    async def delete_many(self, collection: str, query: Filter) -> int:
        """Deletes every matching document and returns how many were deleted.

        Raises:
            ValidationError: If the filter is empty. Use `delete_all` to empty a collection.
        """
        handle = self._collection(collection)
        if not query:
            raise ValidationError(
                "delete_many requires a non-empty filter. Use delete_all() to delete all documents.", "filter"
            )

        query = normalize_filter(query)
        with _translate_failures("delete_many", collection):
            result = await handle.delete_many(query)

        return result.deleted_count

    async def delete_all(self, collection: str) -> int:
        """Deletes every document in the collection and returns how many were deleted."""
        handle = self._collection(collection)
        with _translate_failures("delete_all", collection):
            result = await handle.delete_many({})

        return result.deleted_count

    # ---------------------------------------- #
    # Index Management                         #
    # ---------------------------------------- #
    async def ensure_index(self, collection: str, field: str, **options: Any) -> str:
        """Creates an ascending index on a field if it doesn't exist and returns its name.

        Keyword options are passed to the driver, e.g. `unique=True` or `expireAfterSeconds=3600`.
        """
        handle = self._collection(collection)
        with _translate_failures("ensure_index", collection):
            return await handle.create_index([(field, ASCENDING)], **options)

    async def ensure_unique_index(self, collection: str, field: str) -> str:
        return await self.ensure_index(collection, field, unique=True)

    async def ensure_compound_index(
        self,
        collection: str,
        fields: Iterable[str | tuple[str, Any]],
        **options: Any,
    ) -> str:
        """Creates an index over several fields and returns its name.

        Fields are either names, indexed ascending, or `(name, direction)` pairs.
        """
        handle = self._collection(collection)
        if isinstance(fields, str):
            raise ValidationError("ensure_compound_index takes a list of fields, not a single field name", "fields")

        keys = [(field, ASCENDING) if isinstance(field, str) else tuple(field) for field in fields]
        if not keys:
            raise ValidationError("ensure_compound_index requires at least one field", "fields")

        with _translate_failures("ensure_compound_index", collection):
            return await handle.create_index(keys, **options)

    async def list_indexes(self, collection: str) -> list[Document]:
        handle = self._collection(collection)
        with _translate_failures("list_indexes", collection):
            return await handle.list_indexes().to_list(length=None)

    async def drop_index(self, collection: str, name: str):
        handle = self._collection(collection)
        with _translate_failures("drop_index", collection):
            await handle.drop_index(name)

    # ---------------------------------------- #
    # Context Management                       #
    # ---------------------------------------- #
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
