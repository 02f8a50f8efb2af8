from typing import List, NamedTuple, Optional

import pytest

from resumable.write_channel import BaseWriteChannel


class Flush(NamedTuple):
    data: bytes
    last: bool
    position: int


class FakeTransport:
    """Stands in for a storage provider.  Passed to channels as their options,
    so that a restored channel records into the same place."""

    def __init__(
        self,
        min_chunk_size: Optional[int] = None,
        default_chunk_size: Optional[int] = None,
    ):
        self.min_chunk_size = min_chunk_size
        self.default_chunk_size = default_chunk_size
        self.flushes: List[Flush] = []
        self.failures: List[Exception] = []

    def flush(self, channel: BaseWriteChannel, length: int, last: bool) -> None:
        if self.failures:
            raise self.failures.pop(0)
        data = bytes(channel.buffer[0:length])
        self.flushes.append(Flush(data, last, channel.position))

    def sent(self) -> bytes:
        return b"".join(flush.data for flush in self.flushes)


class RecordingWriteChannel(BaseWriteChannel):
    def min_chunk_size(self) -> int:
        return self.options.min_chunk_size or super().min_chunk_size()

    def default_chunk_size(self) -> int:
        return self.options.default_chunk_size or super().default_chunk_size()

    def _flush_buffer(self, length: int, last: bool) -> None:
        self.options.flush(self, length, last)

    def abort(self) -> None:
        self._abandon()


@pytest.fixture
def transport():
    # Tiny chunks: 4 byte alignment, flush at 8 bytes.
    return FakeTransport(min_chunk_size=4, default_chunk_size=8)


@pytest.fixture
def channel(transport):
    return RecordingWriteChannel(transport, "gs://bucket/object", "session-1")


@pytest.fixture
def default_channel():
    # Real chunk sizes.
    return RecordingWriteChannel(FakeTransport(), "gs://bucket/object", "session-1")
