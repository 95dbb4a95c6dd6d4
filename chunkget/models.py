# chunkget/models.py
"""
Data Models for ChunkGet
"""

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union


@dataclass(frozen=True)
class DownloadConfig:
    """Settings consumed by a download session"""
    concurrency: int = 8
    chunk_size: int = 16384
    resume: bool = True
    max_retries: int = 2
    retry_delay: float = 0.5
    cache_dir: Optional[Path] = None
    keep_cache: bool = False
    purge_on_mismatch: bool = False

    def __post_init__(self):
        if self.concurrency <= 0:
            raise ValueError("Maximum of concurrent requests must be greater than 0!")
        if self.chunk_size <= 0:
            raise ValueError("Chunk size must be greater than 0!")
        if self.max_retries < 0:
            raise ValueError("Retry count cannot be negative!")
        if self.retry_delay < 0:
            raise ValueError("Retry delay cannot be negative!")


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte range of the remote resource"""
    start: int
    end: int

    @classmethod
    def for_chunk(cls, index: int, chunk_size: int) -> "ByteRange":
        start = index * chunk_size
        return cls(start=start, end=start + chunk_size - 1)

    def header(self) -> str:
        return f"bytes={self.start}-{self.end}"


@dataclass(frozen=True)
class FetchResponse:
    """Status code and body of a ranged fetch"""
    status: int
    body: Optional[bytes] = None


# Classified fetch outcomes. The set is closed: the engine dispatches on
# exactly these four types.

@dataclass(frozen=True)
class ChunkData:
    chunk_index: int
    data: bytes


@dataclass(frozen=True)
class EndOfResource:
    chunk_index: int


@dataclass(frozen=True)
class ValidatorMismatch:
    chunk_index: int


@dataclass(frozen=True)
class Unrecognized:
    chunk_index: int
    status: int


Outcome = Union[ChunkData, EndOfResource, ValidatorMismatch, Unrecognized]


class SessionState(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    ABORTED = "aborted"
    COMPLETED = "completed"


class AbortReason(enum.Enum):
    VALIDATOR_MISMATCH = "validator_mismatch"
    UNRECOGNIZED_RESPONSE = "unrecognized_response"
    TRANSPORT_ERROR = "transport_error"
    MALFORMED_CHUNK = "malformed_chunk"


@dataclass
class SessionResult:
    """Terminal result of one download session"""
    state: SessionState
    chunks_stored: int = 0
    reason: Optional[AbortReason] = None
    chunk_index: Optional[int] = None
    status: Optional[int] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.state is SessionState.COMPLETED
