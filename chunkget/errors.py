# chunkget/errors.py
"""
Exception hierarchy for ChunkGet.

Session-fatal conditions met while chunks are being fetched are reported
through a SessionResult; the exceptions here cover failures before a session
starts, transport failures the engine retries, and broken invariants.
"""

from typing import List


class ChunkGetError(Exception):
    """Base class for all ChunkGet errors."""


class TransientTransportError(ChunkGetError):
    """Connection failure or timeout while fetching a byte range."""


class ValidatorDiscoveryError(ChunkGetError):
    """The resource's validator could not be determined."""


class ValidatorNotOkError(ValidatorDiscoveryError):
    def __init__(self, status: int):
        super().__init__(f"Got a non-200 response from the check: {status}")
        self.status = status


class MissingValidatorError(ValidatorDiscoveryError):
    def __init__(self):
        super().__init__("Did not get any ETag from the check!")


class AmbiguousValidatorError(ValidatorDiscoveryError):
    def __init__(self, etags: List[str]):
        super().__init__(f"Multiple ETags returned, ambiguous: {etags}")
        self.etags = etags


class ChunkConflictError(ChunkGetError):
    """Different bytes were stored twice under the same chunk index."""

    def __init__(self, index: int):
        super().__init__(f"Chunk {index} is already stored with different content")
        self.index = index


class StoreGapError(ChunkGetError):
    """The store was read back while chunks were missing."""

    def __init__(self, missing: int):
        super().__init__(f"Cannot assemble output: chunk {missing} is missing")
        self.missing = missing


class CacheDirectoryError(ChunkGetError):
    """The chunk cache directory cannot be used."""


class OutputExistsError(ChunkGetError):
    """The output file exists and will not be overwritten."""
