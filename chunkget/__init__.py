"""ChunkGet - resumable chunked HTTP downloader."""

from chunkget.classifier import classify
from chunkget.engine import DownloadEngine, download_file
from chunkget.models import DownloadConfig, SessionResult, SessionState
from chunkget.store import DiskChunkStore, InMemoryChunkStore, create_store

__version__ = "1.0.0"

__all__ = [
    "DiskChunkStore",
    "DownloadConfig",
    "DownloadEngine",
    "InMemoryChunkStore",
    "SessionResult",
    "SessionState",
    "classify",
    "create_store",
    "download_file",
]
