# chunkget/engine.py
"""
Core download engine: bounded-concurrency chunk scheduling with resume.
"""

import asyncio
import itertools
import logging
from typing import Awaitable, Callable, Dict, Iterable, Iterator, Optional

from chunkget.classifier import classify
from chunkget.errors import TransientTransportError
from chunkget.models import (
    AbortReason,
    ByteRange,
    ChunkData,
    DownloadConfig,
    EndOfResource,
    FetchResponse,
    Outcome,
    SessionResult,
    SessionState,
    Unrecognized,
    ValidatorMismatch,
)
from chunkget.store import ChunkStore, create_store
from chunkget.transport import HttpTransport

logger = logging.getLogger(__name__)

Fetch = Callable[[str, ByteRange, str], Awaitable[FetchResponse]]
Sink = Callable[[Iterable[bytes]], None]

MAX_RETRY_WAIT = 30


class DownloadEngine:
    """Runs one download session for a single resource and validator."""

    def __init__(self, url: str, store: ChunkStore, validator: str, fetch: Fetch,
                 config: Optional[DownloadConfig] = None, sink: Optional[Sink] = None):
        self.url = url
        self.store = store
        self.validator = validator
        self.fetch = fetch
        self.config = config or DownloadConfig()
        self.sink = sink

        self.state = SessionState.RUNNING
        self.end_index: Optional[int] = None
        self.result: Optional[SessionResult] = None
        self.in_flight: Dict[asyncio.Task, int] = {}
        self.max_in_flight = 0
        self.chunks_stored = 0

        # Callbacks for progress display
        self.progress_callback: Optional[Callable[[int, int], None]] = None
        self.status_callback: Optional[Callable[[str], None]] = None

    def demand(self, start: int) -> Iterator[int]:
        """Increasing chunk indices from start, skipping chunks already stored."""
        return (index for index in itertools.count(start) if index not in self.store)

    async def run(self) -> SessionResult:
        """Download every chunk, then hand them to the sink in index order."""
        start = self.store.first_gap()
        if start != 0:
            self._update_status(f"Starting at chunk {start}")
        demand = self.demand(start)

        try:
            self._admit(demand)
            while self.in_flight:
                done, _ = await asyncio.wait(self.in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=self.in_flight.get):
                    index = self.in_flight.pop(task)
                    await self._settle(index, task)
                    if self.state is SessionState.ABORTED:
                        break
                if self.state is SessionState.ABORTED:
                    await self._cancel_in_flight()
                    return self.result
                self._admit(demand)
        finally:
            await self._cancel_in_flight()

        return self._complete()

    def _admit(self, demand: Iterator[int]):
        """Fill free slots with the next chunk indices while demand is open."""
        while self.state is SessionState.RUNNING and len(self.in_flight) < self.config.concurrency:
            index = next(demand)
            task = asyncio.create_task(self.fetch_with_retry(index))
            self.in_flight[task] = index
            self.max_in_flight = max(self.max_in_flight, len(self.in_flight))

    async def fetch_with_retry(self, index: int) -> FetchResponse:
        """Fetch one chunk, retrying transient transport failures."""
        byte_range = ByteRange.for_chunk(index, self.config.chunk_size)
        attempts = self.config.max_retries + 1
        for attempt in range(attempts):
            try:
                return await self.fetch(self.url, byte_range, self.validator)
            except TransientTransportError as e:
                if attempt == attempts - 1:
                    raise
                wait_time = min(self.config.retry_delay * 2 ** attempt, MAX_RETRY_WAIT)
                logger.warning("Chunk %d (Retry %d/%d): %s. Retrying in %.1fs.",
                               index, attempt + 1, self.config.max_retries, e, wait_time)
                if wait_time:
                    await asyncio.sleep(wait_time)

    async def _settle(self, index: int, task: asyncio.Task):
        try:
            response = task.result()
        except TransientTransportError as e:
            self._abort(AbortReason.TRANSPORT_ERROR, index,
                        f"Chunk {index} failed after {self.config.max_retries + 1} attempts: {e}")
            return
        await self.handle(classify(response.status, index, response.body))

    async def handle(self, outcome: Outcome):
        """Apply one classified fetch outcome to the session."""
        if isinstance(outcome, ChunkData):
            if len(outcome.data) > self.config.chunk_size:
                self._abort(AbortReason.MALFORMED_CHUNK, outcome.chunk_index,
                            f"Chunk {outcome.chunk_index} is {len(outcome.data)} bytes, "
                            f"more than the chunk size {self.config.chunk_size}. Aborting.")
                return
            await self._put(outcome.chunk_index, outcome.data)
            self.chunks_stored += 1
            logger.debug("Stored chunk %d (%d bytes)", outcome.chunk_index, len(outcome.data))
            if self.progress_callback:
                self.progress_callback(outcome.chunk_index, len(outcome.data))
        elif isinstance(outcome, EndOfResource):
            if self.end_index is None or outcome.chunk_index < self.end_index:
                self.end_index = outcome.chunk_index
            if self.state is SessionState.RUNNING:
                logger.info("End of resource reached at chunk %d", outcome.chunk_index)
                self.state = SessionState.DRAINING
        elif isinstance(outcome, ValidatorMismatch):
            self._abort(AbortReason.VALIDATOR_MISMATCH, outcome.chunk_index,
                        f"ETag changed while downloading at chunk {outcome.chunk_index}! "
                        f"All previous chunks are invalid.")
            if self.config.purge_on_mismatch:
                self.store.clear()
        elif isinstance(outcome, Unrecognized):
            self._abort(AbortReason.UNRECOGNIZED_RESPONSE, outcome.chunk_index,
                        f"Unknown code {outcome.status} returned for chunk "
                        f"{outcome.chunk_index}. Aborting.", status=outcome.status)
        else:
            raise TypeError(f"Unknown fetch outcome: {outcome!r}")

    async def _put(self, index: int, data: bytes):
        if self.store.blocking:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.store.put, index, data)
        else:
            self.store.put(index, data)

    def _abort(self, reason: AbortReason, index: int, message: str, status: Optional[int] = None):
        self.state = SessionState.ABORTED
        self.result = SessionResult(
            state=SessionState.ABORTED,
            chunks_stored=len(self.store),
            reason=reason,
            chunk_index=index,
            status=status,
            message=message,
        )
        logger.error(message)
        self._update_status(message)

    async def _cancel_in_flight(self):
        """Cancel outstanding fetches and discard whatever they return."""
        if not self.in_flight:
            return
        tasks = list(self.in_flight)
        self.in_flight.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _find_short_chunk(self) -> Optional[int]:
        """First chunk before the last one that is not exactly chunk_size bytes."""
        indices = sorted(self.store.indices())
        for index in indices[:-1]:
            if self.store.size(index) != self.config.chunk_size:
                return index
        return None

    def _complete(self) -> SessionResult:
        short = self._find_short_chunk()
        if short is not None:
            size = self.store.size(short)
            self.store.discard(short)
            self._abort(AbortReason.MALFORMED_CHUNK, short,
                        f"Chunk {short} is {size} bytes but is not the last chunk. "
                        f"Discarded it; the output was not written.")
            return self.result
        self.state = SessionState.COMPLETED
        count = len(self.store)
        if self.sink:
            self.sink(self.store.all_chunks())
        if not self.config.keep_cache:
            self.store.clear()
        message = f"Done! {count} chunks downloaded."
        self._update_status(message)
        self.result = SessionResult(state=SessionState.COMPLETED, chunks_stored=count, message=message)
        return self.result

    def _update_status(self, message: str):
        """Send status update to the caller via callback."""
        logger.info(message)
        if self.status_callback:
            self.status_callback(message)


async def download_file(url: str, sink: Sink, config: Optional[DownloadConfig] = None,
                        transport: Optional[HttpTransport] = None,
                        progress_callback: Optional[Callable[[int, int], None]] = None,
                        status_callback: Optional[Callable[[str], None]] = None) -> SessionResult:
    """Discover the validator, open the chunk store and run a download session."""
    config = config or DownloadConfig()
    owns_transport = transport is None
    if owns_transport:
        transport = HttpTransport(concurrency=config.concurrency)
        await transport.open()
    try:
        validator = await transport.discover_validator(url)
        store = create_store(config, url, validator)
        engine = DownloadEngine(url, store, validator, transport.fetch, config, sink)
        engine.progress_callback = progress_callback
        engine.status_callback = status_callback
        return await engine.run()
    finally:
        if owns_transport:
            await transport.close()
