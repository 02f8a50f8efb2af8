# Copyright 2015 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""A buffering write channel for resumable uploads.

Base class definition, and the snapshot type used to suspend and resume an
upload."""

import abc
import logging

from typing import Any, Optional, Type
from typing_extensions import Self


logger = logging.getLogger(__name__)


# Resumable upload protocols want every chunk but the last to be a multiple of
# this many bytes.
MIN_CHUNK_SIZE = 256 * 1024  # 256KB

DEFAULT_CHUNK_SIZE = 8 * MIN_CHUNK_SIZE  # 2MB


class ClosedChannelError(Exception):
  """Raised when writing to a channel that has already been closed."""

  def __init__(self) -> None:
    super().__init__('Channel is closed')


class BaseWriteChannel(object):
  """Buffers written data and sends it to an upload session in chunks.

  Subclasses implement _flush_buffer() to talk to a specific storage provider.
  Everything else (buffering, chunk alignment, capture and restore) lives here.

  A channel has a single owner.  There is no locking, so calls from multiple
  threads must be serialized by the caller.
  """

  def __init__(self, options: Any, entity: str, upload_id: str) -> None:
    """
    Args:
        options: The upload configuration used to talk to the provider.
        entity: A reference to the destination this channel writes to.
        upload_id: The session identifier issued when the upload started.
    """
    self._options = options
    self._entity: str = entity
    self._upload_id: str = upload_id

    # Bytes sent to the upload session so far.
    self._position: int = 0
    # Unsent data lives in self._buffer[0:self._limit].
    self._buffer: Optional[bytearray] = bytearray()
    self._limit: int = 0
    self._is_open: bool = True
    self._chunk_size: int = self.default_chunk_size()

  def min_chunk_size(self) -> int:
    """The alignment required for every chunk except the last."""
    return MIN_CHUNK_SIZE

  def default_chunk_size(self) -> int:
    return DEFAULT_CHUNK_SIZE

  @abc.abstractmethod
  def _flush_buffer(self, length: int, last: bool) -> None:
    """Send the first |length| bytes of the buffer to the upload session.

    The bytes belong at offset self.position in the uploaded object.  If
    |last| is true, this is the final chunk and the session should be
    finalized.  Failures must be raised, never swallowed.
    """
    pass

  @property
  def options(self) -> Any:
    return self._options

  @property
  def entity(self) -> str:
    return self._entity

  @property
  def upload_id(self) -> str:
    return self._upload_id

  @property
  def position(self) -> int:
    return self._position

  @property
  def limit(self) -> int:
    return self._limit

  @property
  def buffer(self) -> memoryview:
    """A read-only view of the data which has not been sent yet."""
    if self._buffer is None:
      return memoryview(b'')
    return memoryview(self._buffer)[:self._limit].toreadonly()

  @property
  def chunk_size(self) -> int:
    return self._chunk_size

  @chunk_size.setter
  def chunk_size(self, chunk_size: int) -> None:
    # Round down to the alignment, but never below it.
    minimum = self.min_chunk_size()
    chunk_size = (chunk_size // minimum) * minimum
    self._chunk_size = max(minimum, chunk_size)

  def is_open(self) -> bool:
    return self._is_open

  def _flush(self) -> None:
    if self._limit < self._chunk_size:
      return

    assert self._buffer is not None
    # Send the largest aligned prefix.  The rest waits for more data or for
    # close().
    length = self._limit - self._limit % self.min_chunk_size()
    logger.debug('Flushing %d bytes at offset %d of %s',
                 length, self._position, self._entity)
    self._flush_buffer(length, False)

    self._position += length
    self._limit -= length
    compacted = bytearray(self._chunk_size)
    compacted[0:self._limit] = self._buffer[length:length + self._limit]
    self._buffer = compacted

  def _validate_open(self) -> None:
    if not self._is_open:
      raise ClosedChannelError()

  def write(self, data: bytes) -> int:
    """Accept all of |data|, flushing full chunks as they become available.

    Returns the number of bytes accepted, which is always len(data).  If a
    flush fails, the error propagates and the data is not kept, so the same
    write may be retried.
    """
    self._validate_open()
    assert self._buffer is not None

    to_write = len(data)
    limit = self._limit
    space_in_buffer = len(self._buffer) - limit
    if space_in_buffer < to_write:
      # Never smaller than a whole chunk.
      grown = bytearray(max(self._chunk_size,
                            len(self._buffer) + to_write - space_in_buffer))
      grown[0:limit] = self._buffer[0:limit]
      self._buffer = grown

    self._buffer[limit:limit + to_write] = data
    self._limit = limit + to_write
    try:
      self._flush()
    except Exception:
      # Drop the new bytes rather than keep them buffered, so that retrying
      # this write does not buffer them twice.
      self._limit = limit
      raise
    return to_write

  def close(self) -> None:
    """Send all remaining data as the final chunk.

    Closing a closed channel does nothing.
    """
    if not self._is_open:
      return

    logger.debug('Flushing final %d bytes at offset %d of %s',
                 self._limit, self._position, self._entity)
    self._flush_buffer(self._limit, True)
    self._position += self._limit
    self._limit = 0
    self._is_open = False
    self._buffer = None

  @abc.abstractmethod
  def abort(self) -> None:
    """Cancel the upload session and close the channel without finishing."""
    pass

  def _abandon(self) -> None:
    """Close without sending anything.  Used when a session is cancelled."""
    self._limit = 0
    self._is_open = False
    self._buffer = None

  def __enter__(self) -> Self:
    return self

  def __exit__(self, exc_type, *unused_args) -> None:
    # If the body failed, leave the channel open so it can still be captured.
    if exc_type is None:
      self.close()

  def capture(self) -> 'ChannelState':
    """Take a snapshot from which this upload can be resumed.

    The channel stays usable afterward.
    """
    buffer_to_save: Optional[bytes] = None
    if self._is_open:
      self._flush()
      assert self._buffer is not None
      buffer_to_save = bytes(self._buffer[0:self._limit])

    return ChannelState(
        channel_class=self.__class__,
        options=self._options,
        entity=self._entity,
        upload_id=self._upload_id,
        position=self._position,
        buffer=buffer_to_save,
        is_open=self._is_open,
        chunk_size=self._chunk_size)

  def _restore(self, state: 'ChannelState') -> None:
    """Adopt the progress recorded in |state|."""
    if state.buffer is not None:
      self._buffer = bytearray(state.buffer)
      self._limit = len(state.buffer)
    self._position = state.position
    self._is_open = state.is_open
    self._chunk_size = state.chunk_size

  def __repr__(self) -> str:
    return '{}(entity={!r}, upload_id={!r}, position={}, is_open={})'.format(
        self.__class__.__name__, self._entity, self._upload_id,
        self._position, self._is_open)


class ChannelState(object):
  """An immutable snapshot of a write channel.

  Holds everything needed to rebuild the channel, possibly in another process.
  Instances can be pickled.
  """

  def __init__(self,
               channel_class: Type[BaseWriteChannel],
               options: Any,
               entity: str,
               upload_id: str,
               position: int,
               buffer: Optional[bytes],
               is_open: bool,
               chunk_size: int) -> None:
    self._channel_class = channel_class
    self._options = options
    self._entity = entity
    self._upload_id = upload_id
    self._position = position
    self._buffer = None if buffer is None else bytes(buffer)
    self._is_open = is_open
    self._chunk_size = chunk_size

  @property
  def channel_class(self) -> Type[BaseWriteChannel]:
    return self._channel_class

  @property
  def options(self) -> Any:
    return self._options

  @property
  def entity(self) -> str:
    return self._entity

  @property
  def upload_id(self) -> str:
    return self._upload_id

  @property
  def position(self) -> int:
    """Bytes the upload session had received when the snapshot was taken."""
    return self._position

  @property
  def buffer(self) -> Optional[bytes]:
    """Unsent data, or None if the channel was closed."""
    return self._buffer

  @property
  def is_open(self) -> bool:
    return self._is_open

  @property
  def chunk_size(self) -> int:
    return self._chunk_size

  def restore(self) -> BaseWriteChannel:
    """Build a channel that continues the upload where this snapshot left off.

    The upload session itself must still be valid on the provider's side.
    """
    channel = self._channel_class(self._options, self._entity, self._upload_id)
    channel._restore(self)
    return channel

  def _key(self) -> tuple:
    return (self._channel_class, self._entity, self._upload_id,
            self._position, self._buffer, self._is_open, self._chunk_size)

  def __eq__(self, other: Any) -> bool:
    if not isinstance(other, ChannelState):
      return NotImplemented
    return self._key() == other._key() and self._options == other._options

  def __hash__(self) -> int:
    return hash(self._key())

  def __repr__(self) -> str:
    return ('ChannelState(entity={!r}, upload_id={!r}, position={}, '
            'is_open={})').format(self._entity, self._upload_id,
                                  self._position, self._is_open)
