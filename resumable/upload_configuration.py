# Copyright 2019 Google LLC
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

import yaml

from . import configuration

from typing import Optional


class RetryConfig(configuration.Base):
  """Retry settings for transient failures while sending a chunk.

  The write channel itself never retries.  Each storage provider applies these
  settings around its own requests.
  """

  initial_delay = configuration.Field(float, default=1.0).cast()
  """Seconds to wait before the first retry."""

  max_delay = configuration.Field(float, default=32.0).cast()
  """The longest wait between two retries, in seconds."""

  multiplier = configuration.Field(float, default=2.0).cast()
  """How much the delay grows after each retry."""

  deadline = configuration.Field(float, default=600.0).cast()
  """Give up retrying a request after this many seconds."""

  max_attempts = configuration.Field(int, default=6).cast()
  """The most attempts made for a single request, for providers which count
  attempts instead of time."""


class UploadConfig(configuration.Base):
  """An object representing the upload config for a single channel."""

  chunk_size = configuration.Field(configuration.ByteSize).cast()
  """How much data to buffer before sending a chunk.

  Rounded down to the provider's chunk alignment.  If not specified, the
  provider's default is used.
  """

  content_type = configuration.Field(
      str, default='application/octet-stream').cast()
  """The content type of the uploaded object."""

  cache_control = configuration.Field(str, default='no-cache').cast()
  """The Cache-Control header stored with the uploaded object."""

  retry = configuration.Field(RetryConfig).cast()
  """Retry settings.  See RetryConfig."""


def load_config(path: Optional[str]) -> UploadConfig:
  """Load an UploadConfig from a YAML file.

  With no path, or an empty file, all defaults are used.
  """
  if not path:
    return UploadConfig({})

  with open(path, 'r') as f:
    config_dict = yaml.safe_load(f) or {}
  return UploadConfig(config_dict)
