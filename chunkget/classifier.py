# chunkget/classifier.py
"""
Maps the status code of a ranged conditional GET to a fetch outcome.
"""

from http import HTTPStatus
from typing import Optional

from chunkget.models import ChunkData, EndOfResource, Outcome, Unrecognized, ValidatorMismatch


def classify(status: int, chunk_index: int, body: Optional[bytes]) -> Outcome:
    """Classify one fetch result. Total over all status codes and free of I/O."""
    if status == HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE:
        return EndOfResource(chunk_index)
    if status == HTTPStatus.PRECONDITION_FAILED:
        return ValidatorMismatch(chunk_index)
    if status == HTTPStatus.PARTIAL_CONTENT and body is not None:
        return ChunkData(chunk_index, bytes(body))
    # A 200 here means the server ignored the Range header.
    return Unrecognized(chunk_index, status)
