from typing import Any, Mapping, Sequence

from doclink import duplicate_keys
from doclink.errors import ConnectorError, OperationFailedError
from doclink.shared_types import BulkCreateResult, BulkFailure, Document


def reconcile_insert_many(
    collection: str,
    originals: Sequence[Document],
    prepared: Sequence[Document],
    write_errors: Sequence[Mapping[str, Any]] = (),
) -> BulkCreateResult:
    """Splits the documents of an unordered insert into those that were written and those that failed.

    Write errors are matched to documents by their `index`. Every other document was inserted, and because the driver
    assigns `_id` client side before sending the batch, its prepared copy already carries its identifier.

    Args:
        collection: Name of the collection the documents were inserted into.
        originals: The documents as the caller passed them.
        prepared: The copies actually sent to the driver, in the same order.
        write_errors: The `writeErrors` entries of a bulk write error, empty on full success.
    """
    errors_by_index = {write_error["index"]: write_error for write_error in write_errors}
    result = BulkCreateResult()
    for index, (original, document) in enumerate(zip(originals, prepared, strict=True)):
        if index in errors_by_index:
            error = _classify_write_error(collection, errors_by_index[index])
            result.failed.append(BulkFailure(original, error))
        else:
            result.inserted.append(document)

    return result


def _classify_write_error(collection: str, write_error: Mapping[str, Any]) -> ConnectorError:
    details = duplicate_keys.DuplicateKeyDetails.from_write_error(write_error)
    if details.is_duplicate_key:
        return duplicate_keys.diagnose(details, collection)

    return OperationFailedError("insert_many", collection, details.message or f"write error code {details.code}")
