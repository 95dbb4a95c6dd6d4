# chunkget/store.py
"""
Chunk stores: the record of which chunks of a resource are already downloaded.

A store holds chunk bytes keyed by chunk index for one resource and one
validator. The in-memory store lives only as long as the process; the disk
store keeps each chunk in its own file so that an interrupted download can
resume where it stopped.
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, Optional, Set

from chunkget.errors import CacheDirectoryError, ChunkConflictError, StoreGapError
from chunkget.models import DownloadConfig
from chunkget.utils import cache_key

logger = logging.getLogger(__name__)

CHUNK_SUFFIX = ".chunk"
METADATA_NAME = "store.json"
CACHE_DIR_NAME = "chunkget"


class ChunkStore(ABC):
    """Mapping from chunk index to chunk bytes."""

    # Whether put() does blocking I/O and should run off the event loop.
    blocking = False

    def __init__(self):
        self._lock = threading.Lock()

    @abstractmethod
    def get(self, index: int) -> Optional[bytes]:
        """Return the bytes of a stored chunk, or None."""

    @abstractmethod
    def indices(self) -> Set[int]:
        """Snapshot of the stored chunk indices."""

    @abstractmethod
    def _write(self, index: int, data: bytes) -> None:
        """Persist a chunk that is not stored yet."""

    @abstractmethod
    def size(self, index: int) -> Optional[int]:
        """Length in bytes of a stored chunk, or None."""

    @abstractmethod
    def discard(self, index: int) -> None:
        """Remove one chunk so a later session fetches it again."""

    @abstractmethod
    def clear(self) -> None:
        """Discard every stored chunk."""

    def put(self, index: int, data: bytes) -> None:
        """Store a chunk. Storing identical bytes again is a no-op."""
        if index < 0:
            raise ValueError(f"Chunk index cannot be negative: {index}")
        with self._lock:
            existing = self.get(index)
            if existing is not None:
                if existing != data:
                    raise ChunkConflictError(index)
                return
            self._write(index, bytes(data))

    def first_gap(self) -> int:
        """Smallest chunk index that is not stored."""
        present = self.indices()
        index = 0
        while index in present:
            index += 1
        return index

    def all_chunks(self) -> Iterator[bytes]:
        """Chunks in index order. Raises StoreGapError at once if any are missing."""
        count = len(self)
        gap = self.first_gap()
        if gap != count:
            raise StoreGapError(gap)
        return self._read_chunks(count)

    def _read_chunks(self, count: int) -> Iterator[bytes]:
        for index in range(count):
            data = self.get(index)
            if data is None:
                raise StoreGapError(index)
            yield data

    def __contains__(self, index: int) -> bool:
        return index in self.indices()

    def __len__(self) -> int:
        return len(self.indices())


class InMemoryChunkStore(ChunkStore):
    """Chunks held in process memory; nothing survives a restart."""

    def __init__(self):
        super().__init__()
        self._chunks: Dict[int, bytes] = {}

    def get(self, index: int) -> Optional[bytes]:
        return self._chunks.get(index)

    def indices(self) -> Set[int]:
        return set(self._chunks)

    def _write(self, index: int, data: bytes) -> None:
        self._chunks[index] = data

    def size(self, index: int) -> Optional[int]:
        data = self._chunks.get(index)
        return None if data is None else len(data)

    def discard(self, index: int) -> None:
        with self._lock:
            self._chunks.pop(index, None)

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()

    def __contains__(self, index: int) -> bool:
        return index in self._chunks


class DiskChunkStore(ChunkStore):
    """
    Chunks kept in a per-resource directory, one file per chunk.

    The directory records the validator and chunk size it was filled under.
    Opening it with a different validator or chunk size discards its contents.
    """

    blocking = True

    def __init__(self, root: Path, resource_key: str, validator: str, chunk_size: int):
        super().__init__()
        self.directory = Path(root) / resource_key
        self.metadata_file = self.directory / METADATA_NAME
        self.resource_key = resource_key
        self.validator = validator
        self.chunk_size = chunk_size
        self._indices: Set[int] = set()

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheDirectoryError(
                f"Cannot create chunk cache directory {self.directory}: {e}") from e
        if self._metadata_matches():
            self._load_indices()
        else:
            self._reset()

    def _metadata_matches(self) -> bool:
        """Check the stored metadata against this session's validator."""
        if not self.metadata_file.exists():
            return False
        try:
            with open(self.metadata_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable chunk cache metadata in %s: %s. Starting fresh.",
                           self.directory, e)
            return False

        if data.get('validator') != self.validator or data.get('chunk_size') != self.chunk_size:
            logger.info("Chunk cache in %s was filled under validator %r (chunk size %s). "
                        "Metadata mismatch, starting fresh.",
                        self.directory, data.get('validator'), data.get('chunk_size'))
            return False
        return True

    def _reset(self) -> None:
        """Remove every chunk file and record this session's metadata."""
        self._remove_chunk_files()
        metadata = {
            'resource': self.resource_key,
            'validator': self.validator,
            'chunk_size': self.chunk_size,
            'created_at': datetime.now().isoformat(),
        }
        self._write_file(self.metadata_file, json.dumps(metadata, indent=4).encode("utf-8"))

    def _remove_chunk_files(self) -> None:
        for path in self.directory.iterdir():
            if path.is_file() and path.name != METADATA_NAME:
                path.unlink()
        self._indices.clear()

    def _load_indices(self) -> None:
        for path in self.directory.iterdir():
            if not path.is_file() or path.name == METADATA_NAME:
                continue
            if path.suffix == CHUNK_SUFFIX and path.stem.isdigit():
                self._indices.add(int(path.stem))
            else:
                # Leftover temporary file from an interrupted write.
                path.unlink()
        if self._indices:
            logger.info("Found %d cached chunks in %s", len(self._indices), self.directory)

    def _chunk_path(self, index: int) -> Path:
        return self.directory / f"{index}{CHUNK_SUFFIX}"

    def _write_file(self, path: Path, data: bytes) -> None:
        """Write a file atomically and make it durable before returning."""
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self._fsync_directory()

    def _fsync_directory(self) -> None:
        if os.name != "posix":
            return
        dir_fd = os.open(self.directory, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def get(self, index: int) -> Optional[bytes]:
        if index not in self._indices:
            return None
        return self._chunk_path(index).read_bytes()

    def indices(self) -> Set[int]:
        return set(self._indices)

    def _write(self, index: int, data: bytes) -> None:
        self._write_file(self._chunk_path(index), data)
        self._indices.add(index)

    def size(self, index: int) -> Optional[int]:
        if index not in self._indices:
            return None
        return self._chunk_path(index).stat().st_size

    def discard(self, index: int) -> None:
        with self._lock:
            self._indices.discard(index)
            path = self._chunk_path(index)
            if path.exists():
                path.unlink()

    def clear(self) -> None:
        with self._lock:
            self._indices.clear()
            if self.directory.exists():
                shutil.rmtree(self.directory)

    def __contains__(self, index: int) -> bool:
        return index in self._indices


def default_cache_dir() -> Path:
    return Path(tempfile.gettempdir()) / CACHE_DIR_NAME


def create_store(config: DownloadConfig, url: str, validator: str) -> ChunkStore:
    """Pick the store for a session: on disk when resuming, in memory otherwise."""
    if not config.resume:
        return InMemoryChunkStore()

    root = Path(config.cache_dir) if config.cache_dir is not None else default_cache_dir()
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CacheDirectoryError(f"Cannot create chunk cache directory {root}: {e}") from e
    if not root.is_dir():
        raise CacheDirectoryError(f"Chunk cache location {root} is not a directory")
    if not os.access(root, os.W_OK):
        raise CacheDirectoryError(f"Chunk cache directory {root} is not writeable")

    logger.info("Stashing chunks in: %s", root)
    return DiskChunkStore(root, cache_key(url), validator, config.chunk_size)
