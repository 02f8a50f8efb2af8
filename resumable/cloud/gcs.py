# Copyright 2025 Google LLC
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

"""Upload to Google Cloud Storage through a resumable upload session."""

import logging
import re
import urllib.parse

from typing import List

import google.api_core.exceptions  # type: ignore
import google.api_core.retry  # type: ignore
import google.auth  # type: ignore
import google.cloud.storage  # type: ignore
from google.auth.transport.requests import AuthorizedSession  # type: ignore

from resumable.upload_configuration import RetryConfig, UploadConfig
from resumable.write_channel import BaseWriteChannel


logger = logging.getLogger(__name__)


# The OAuth scope needed to write objects.
STORAGE_SCOPE = 'https://www.googleapis.com/auth/devstorage.read_write'

# GCS answers a non-final chunk with 308 ("Resume Incomplete").
HTTP_STATUS_RESUME_INCOMPLETE = 308
HTTP_STATUS_OK = 200
HTTP_STATUS_CREATED = 201
# The status returned when a session is cancelled.
HTTP_STATUS_CLIENT_CLOSED_REQUEST = 499


def make_retry(config: RetryConfig) -> google.api_core.retry.Retry:
  """Build an exponential backoff policy for transient GCS errors."""
  return google.api_core.retry.Retry(
      predicate=google.api_core.retry.if_transient_error,
      initial=config.initial_delay,
      maximum=config.max_delay,
      multiplier=config.multiplier,
      timeout=config.deadline)


def _persisted_bytes(response) -> int:
  """How many bytes the session holds, according to a 308 response."""
  # The Range header looks like "bytes=0-1048575".  Without it, nothing has
  # been persisted yet.
  match = re.match(r'^bytes=0-([0-9]+)$', response.headers.get('Range', ''))
  if not match:
    return 0
  return int(match.group(1)) + 1


class GCSWriteChannel(BaseWriteChannel):
  """See base class for interface docs.

  The upload id is the session URL returned when the resumable upload was
  started.  Chunks are sent with PUT requests carrying a Content-Range.
  """

  def __init__(self, options: UploadConfig, entity: str,
               upload_id: str) -> None:
    super().__init__(options, entity, upload_id)

    credentials, _ = google.auth.default(scopes=[STORAGE_SCOPE])
    self._session = AuthorizedSession(credentials)
    self._retry = make_retry(options.retry)

  def _put(self, data: bytes, content_range: str, expected: List[int]):
    response = self._session.put(
        self.upload_id, data=data, headers={'Content-Range': content_range})
    logger.debug('PUT %s to %s: %d', content_range, self.entity,
                 response.status_code)

    # Raising here lets the retry policy see 429 and 5xx responses.
    if response.status_code not in expected:
      raise google.api_core.exceptions.from_http_response(response)
    return response

  def _flush_buffer(self, length: int, last: bool) -> None:
    data = bytes(self.buffer[0:length])
    start = self.position
    end = start + length

    if last:
      if length:
        content_range = 'bytes {}-{}/{}'.format(start, end - 1, end)
      else:
        # Nothing left to send, but the session still needs its total size.
        content_range = 'bytes */{}'.format(end)

      self._retry(self._put)(data, content_range,
                             [HTTP_STATUS_OK, HTTP_STATUS_CREATED])
      logger.info('Finished upload of %d bytes to %s', end, self.entity)
      return

    offset = start
    while offset < end:
      content_range = 'bytes {}-{}/*'.format(offset, end - 1)
      response = self._retry(self._put)(
          data[offset - start:], content_range, [HTTP_STATUS_RESUME_INCOMPLETE])

      # The server may keep only part of a chunk.  Send the rest again.
      persisted = _persisted_bytes(response)
      if persisted <= offset:
        raise RuntimeError(
            'Upload session for {} made no progress at offset {}'.format(
                self.entity, offset))
      offset = persisted

  def abort(self) -> None:
    """Cancel the upload session and close the channel without finishing."""
    response = self._session.delete(self.upload_id)
    if response.status_code != HTTP_STATUS_CLIENT_CLOSED_REQUEST:
      raise google.api_core.exceptions.from_http_response(response)
    self._abandon()


def start_upload(upload_location: str, config: UploadConfig) -> GCSWriteChannel:
  """Start a resumable upload session to a "gs://bucket/path" location."""
  url = urllib.parse.urlparse(upload_location)

  client = google.cloud.storage.Client()
  # If upload_location is "gs://foo/bar", url.netloc is "foo", which is the
  # bucket name.  No leading slashes, or we get a blank folder name.
  blob = client.bucket(url.netloc).blob(url.path.strip('/'))
  blob.cache_control = config.cache_control

  session_url = blob.create_resumable_upload_session(
      content_type=config.content_type)
  logger.info('Started upload session for %s', upload_location)
  return GCSWriteChannel(config, upload_location, session_url)
