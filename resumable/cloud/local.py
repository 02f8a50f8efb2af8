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

"""Upload to a local file.

Useful for testing, and for staging data on a mounted filesystem."""

import logging
import os
import urllib.parse
import uuid

from resumable.upload_configuration import UploadConfig
from resumable.write_channel import BaseWriteChannel


logger = logging.getLogger(__name__)


def location_to_path(upload_location: str) -> str:
  """Accepts a plain path or a "file://" URL."""
  url = urllib.parse.urlparse(upload_location)
  if url.scheme == 'file':
    return urllib.parse.unquote(url.path)
  return upload_location


class LocalWriteChannel(BaseWriteChannel):
  """See base class for interface docs.

  Data goes to a ".part" file next to the destination, named after the upload
  id.  The part file replaces the destination when the channel is closed.
  """

  def __init__(self, options: UploadConfig, entity: str,
               upload_id: str) -> None:
    super().__init__(options, entity, upload_id)
    self._path = location_to_path(entity)

  @property
  def part_path(self) -> str:
    return '{}.{}.part'.format(self._path, self.upload_id)

  def _flush_buffer(self, length: int, last: bool) -> None:
    # Writing at an absolute offset makes a repeated flush harmless.
    with open(self.part_path, 'r+b') as f:
      f.seek(self.position)
      f.write(self.buffer[0:length])
      if last:
        f.truncate(self.position + length)

    if last:
      os.replace(self.part_path, self._path)
      logger.info('Finished upload of %d bytes to %s',
                  self.position + length, self._path)

  def abort(self) -> None:
    """Delete the part file and close the channel without finishing."""
    if os.path.exists(self.part_path):
      os.remove(self.part_path)
    self._abandon()


def start_upload(upload_location: str,
                 config: UploadConfig) -> LocalWriteChannel:
  path = location_to_path(upload_location)
  dir_path = os.path.dirname(path)
  if dir_path:
    # Create any necessary intermediate folders.
    os.makedirs(dir_path, exist_ok=True)

  channel = LocalWriteChannel(config, upload_location, uuid.uuid4().hex)
  # Start with an empty part file.
  with open(channel.part_path, 'wb'):
    pass
  logger.info('Started upload session for %s', path)
  return channel
