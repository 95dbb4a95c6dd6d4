"""Shared fixtures: an in-process fake of a range-serving HTTP resource."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import pytest

from chunkget.errors import TransientTransportError
from chunkget.models import ByteRange, FetchResponse


class FakeResource:
    """Serves byte ranges of a payload the way a conditional-range server would."""

    def __init__(self, payload: bytes, etag: str = "v1", delay: float = 0.001):
        self.payload = payload
        self.etag = etag
        self.delay = delay
        self.requested: List[int] = []
        self.failures: Dict[int, int] = {}
        self.statuses: Dict[int, int] = {}
        self.delays: Dict[int, float] = {}
        self.bodies: Dict[int, bytes] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = 0
        self.chunk_size: Optional[int] = None

    def fail(self, index: int, times: int) -> None:
        """Make the fetch of a chunk raise a transient error `times` times."""
        self.failures[index] = times

    def respond(self, index: int, status: int) -> None:
        """Force a status code for one chunk."""
        self.statuses[index] = status

    def slow(self, index: int, delay: float) -> None:
        """Delay the response for one chunk."""
        self.delays[index] = delay

    def serve_body(self, index: int, body: bytes) -> None:
        """Answer one chunk with a 206 carrying the given body."""
        self.bodies[index] = body

    async def fetch(self, url: str, byte_range: ByteRange, validator: str) -> FetchResponse:
        size = byte_range.end - byte_range.start + 1
        index = byte_range.start // size
        self.requested.append(index)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(index, self.delay))
            if self.failures.get(index, 0) > 0:
                self.failures[index] -= 1
                raise TransientTransportError(f"connection reset on chunk {index}")
            if index in self.statuses:
                return FetchResponse(status=self.statuses[index])
            if validator != self.etag:
                return FetchResponse(status=412)
            if index in self.bodies:
                return FetchResponse(status=206, body=self.bodies[index])
            if byte_range.start >= len(self.payload):
                return FetchResponse(status=416)
            return FetchResponse(status=206, body=self.payload[byte_range.start:byte_range.end + 1])
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1


def make_payload(length: int) -> bytes:
    return bytes(i % 251 for i in range(length))


@pytest.fixture
def payload() -> bytes:
    return make_payload(32000)


@pytest.fixture
def resource(payload: bytes) -> FakeResource:
    return FakeResource(payload)
