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

"""Upload to Amazon S3 through a multipart upload."""

import logging
import urllib.parse

from typing import Any, Optional

import boto3  # type: ignore
import botocore.config  # type: ignore

from resumable.upload_configuration import RetryConfig, UploadConfig
from resumable.write_channel import BaseWriteChannel


logger = logging.getLogger(__name__)


# S3 has a minimum chunk size for multipart uploads.
MIN_S3_CHUNK_SIZE = (5 << 20)  # 5MB


def create_client(config: RetryConfig) -> Any:
  """Create an S3 client which retries transient errors on its own."""
  client_config = botocore.config.Config(retries={
    'mode': 'standard',
    'max_attempts': config.max_attempts,
  })
  return boto3.client('s3', config=client_config)


def _split_location(upload_location: str) -> tuple:
  # If upload_location is "s3://foo/bar", url.netloc is "foo", which is the
  # bucket name.  Strip slashes, or we get a blank folder name.
  url = urllib.parse.urlparse(upload_location)
  return url.netloc, url.path.strip('/')


class S3WriteChannel(BaseWriteChannel):
  """See base class for interface docs.

  The upload id is the id of an S3 multipart upload.  Each flushed chunk is
  uploaded as one part.
  """

  def __init__(self, options: UploadConfig, entity: str,
               upload_id: str) -> None:
    super().__init__(options, entity, upload_id)

    self._bucket_name, self._key = _split_location(entity)
    self._client = create_client(options.retry)

    # Found by asking S3 on the first flush, so that a restored channel
    # numbers its parts correctly.
    self._next_part_number: Optional[int] = None

  def min_chunk_size(self) -> int:
    return MIN_S3_CHUNK_SIZE

  def default_chunk_size(self) -> int:
    return 2 * MIN_S3_CHUNK_SIZE

  def _list_parts(self) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    paginator = self._client.get_paginator('list_parts')
    for page in paginator.paginate(Bucket=self._bucket_name, Key=self._key,
                                   UploadId=self.upload_id):
      parts.extend(page.get('Parts', []))
    return sorted(parts, key=lambda part: part['PartNumber'])

  def _find_next_part_number(self) -> int:
    # Parts are numbered from 1 and hold consecutive data.  Count the parts
    # which cover everything before our position.  Anything after that was
    # sent by a flush that never completed, and will be overwritten.
    offset = 0
    count = 0
    for part in self._list_parts():
      if offset >= self.position:
        break
      offset += part['Size']
      count += 1

    if offset != self.position:
      raise RuntimeError(
          'Uploaded parts of {} end at {}, expected {}'.format(
              self.entity, offset, self.position))
    return count + 1

  def _flush_buffer(self, length: int, last: bool) -> None:
    if self._next_part_number is None:
      self._next_part_number = self._find_next_part_number()
    part_number = self._next_part_number

    # An empty final part is only needed when nothing else was uploaded.
    if length or part_number == 1:
      self._client.upload_part(
          Bucket=self._bucket_name, Key=self._key,
          PartNumber=part_number, UploadId=self.upload_id,
          Body=bytes(self.buffer[0:length]))
      logger.debug('Uploaded part %d (%d bytes) of %s',
                   part_number, length, self.entity)
    else:
      part_number -= 1

    if last:
      # We have to send this data, in this format, to finish the multipart
      # upload.
      parts = [{
        'PartNumber': part['PartNumber'],
        'ETag': part['ETag'],
      } for part in self._list_parts() if part['PartNumber'] <= part_number]
      self._client.complete_multipart_upload(
          Bucket=self._bucket_name, Key=self._key,
          UploadId=self.upload_id, MultipartUpload={'Parts': parts})
      logger.info('Finished upload of %d parts to %s', len(parts), self.entity)

    # Only move on once everything above succeeded, so that a retry reuses the
    # same part number.
    self._next_part_number = part_number + 1

  def abort(self) -> None:
    """Abort the multipart upload and close the channel without finishing."""
    self._client.abort_multipart_upload(
        Bucket=self._bucket_name, Key=self._key, UploadId=self.upload_id)
    self._abandon()


def start_upload(upload_location: str, config: UploadConfig) -> S3WriteChannel:
  """Start a multipart upload to an "s3://bucket/path" location."""
  bucket_name, key = _split_location(upload_location)

  client = create_client(config.retry)
  response = client.create_multipart_upload(
      Bucket=bucket_name, Key=key, ContentType=config.content_type,
      CacheControl=config.cache_control)
  logger.info('Started multipart upload for %s', upload_location)

  # This ID is sent to subsequent calls into the S3 client.
  return S3WriteChannel(config, upload_location, response['UploadId'])
