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

"""Start uploads to cloud storage providers."""

import urllib.parse

from typing import Optional

from resumable.cloud import local
from resumable.upload_configuration import UploadConfig
from resumable.write_channel import BaseWriteChannel


# Supported protocols.  Built based on which optional modules are available for
# cloud storage providers.  Local files are always supported.
SUPPORTED_PROTOCOLS: list[str] = ['file']


# All supported protocols.  Used to provide more useful error messages.
ALL_SUPPORTED_PROTOCOLS: list[str] = ['file', 'gs', 's3']


# Try to load the GCS (Google Cloud Storage) module.  If we can, the user has
# the libraries needed for GCS support.
try:
  from resumable.cloud import gcs
  SUPPORTED_PROTOCOLS.append('gs')
except ImportError:
  pass


# Try to load the S3 (Amazon Cloud Storage) module.  If we can, the user has
# the libraries needed for S3 support.
try:
  from resumable.cloud import s3
  SUPPORTED_PROTOCOLS.append('s3')
except ImportError:
  pass


def get_protocol(upload_location: str) -> str:
  """Plain paths count as "file"."""
  scheme = urllib.parse.urlparse(upload_location).scheme
  # A one-letter scheme is a Windows drive, as in C:\data\object.
  if len(scheme) <= 1:
    return 'file'
  return scheme


def start_upload(upload_location: str,
                 config: Optional[UploadConfig] = None) -> BaseWriteChannel:
  """Start an upload session and return a channel to write it with.

  The provider is chosen by the scheme of the upload location URL.  The
  configured chunk size, if any, is applied to the new channel.
  """
  if config is None:
    config = UploadConfig({})

  protocol = get_protocol(upload_location)
  if protocol not in ALL_SUPPORTED_PROTOCOLS:
    raise RuntimeError("Protocol of {} isn't supported".format(upload_location))
  if protocol not in SUPPORTED_PROTOCOLS:
    raise RuntimeError(
        'Protocol of {} requires libraries which are not installed'.format(
            upload_location))

  channel: BaseWriteChannel
  if protocol == 'gs':
    channel = gcs.start_upload(upload_location, config)
  elif protocol == 's3':
    channel = s3.start_upload(upload_location, config)
  else:
    channel = local.start_upload(upload_location, config)

  if config.chunk_size:
    channel.chunk_size = config.chunk_size
  return channel
