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

"""Command-line front end.

Uploads a file, and can save the progress of an interrupted upload to a state
file so that running the same command again picks up where it stopped.
"""

import argparse
import logging
import os
import pickle
import sys

from typing import BinaryIO, List, Optional

from resumable import __version__
from resumable.cloud.uploader import start_upload
from resumable.configuration import ConfigError
from resumable.upload_configuration import UploadConfig, load_config
from resumable.write_channel import BaseWriteChannel, ChannelState


logger = logging.getLogger(__name__)


def save_state(state: ChannelState, state_file: str) -> None:
  """Write a snapshot to disk, replacing any older one in a single step."""
  temp_path = state_file + '.tmp'
  with open(temp_path, 'wb') as f:
    pickle.dump(state, f)
  os.replace(temp_path, state_file)


def load_state(state_file: str) -> ChannelState:
  with open(state_file, 'rb') as f:
    state = pickle.load(f)
  if not isinstance(state, ChannelState):
    raise ValueError('{} does not contain an upload state'.format(state_file))
  return state


def copy_to_channel(source: BinaryIO, channel: BaseWriteChannel) -> int:
  """Copy the rest of |source| into |channel|.  Returns the bytes copied."""
  copied = 0
  while True:
    data = source.read(channel.chunk_size)
    if not data:
      return copied
    copied += channel.write(data)


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
  parser = argparse.ArgumentParser(
      prog='resumable-upload',
      description='Upload a file to cloud storage in resumable chunks.')
  parser.add_argument('source',
                      help='The local file to upload')
  parser.add_argument('destination',
                      help='Where to upload it: gs://bucket/path, ' +
                           's3://bucket/path, or a local path')
  parser.add_argument('-c', '--config',
                      help='An optional YAML upload config file')
  parser.add_argument('--state-file',
                      help='Where to save progress if the upload is ' +
                           'interrupted.  If it exists, the upload resumes ' +
                           'from it.')
  parser.add_argument('-v', '--verbose', action='store_true',
                      help='Log every chunk sent')
  parser.add_argument('--version', action='version',
                      version='%(prog)s ' + __version__)
  return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
  args = _parse_args(argv)
  logging.basicConfig(
      level=logging.DEBUG if args.verbose else logging.INFO,
      format='%(asctime)s %(levelname)s %(name)s: %(message)s')

  try:
    config = load_config(args.config)
  except ConfigError as e:
    print('Invalid config: {}'.format(e), file=sys.stderr)
    return 1

  # Open the source first, so that an unreadable source never starts a session.
  try:
    source = open(args.source, 'rb')
  except OSError as e:
    print('Cannot read {}: {}'.format(args.source, e), file=sys.stderr)
    return 1

  with source:
    return _upload(args, config, source)


def _upload(args: argparse.Namespace, config: UploadConfig,
            source: BinaryIO) -> int:
  if args.state_file and os.path.exists(args.state_file):
    state = load_state(args.state_file)
    if state.entity != args.destination:
      print('State file {} belongs to an upload to {}'.format(
          args.state_file, state.entity), file=sys.stderr)
      return 1

    if not state.is_open:
      print('Upload to {} already finished'.format(state.entity))
      os.remove(args.state_file)
      return 0

    channel = state.restore()
    # The snapshot holds everything up to here, sent or buffered.
    offset = state.position + len(state.buffer or b'')
    print('Resuming upload to {} at byte {}'.format(state.entity, offset))
  else:
    channel = start_upload(args.destination, config)
    offset = 0

  try:
    source.seek(offset)
    copy_to_channel(source, channel)
    channel.close()
  except (KeyboardInterrupt, Exception) as e:
    if not isinstance(e, KeyboardInterrupt):
      logger.debug('Upload to %s failed', args.destination, exc_info=True)
      print('Upload failed: {}'.format(e), file=sys.stderr)

    if not args.state_file:
      # Nothing can resume this session, so don't leave it behind.
      channel.abort()
      raise

    save_state(channel.capture(), args.state_file)
    print('Upload interrupted.  Run the same command again to resume from ' +
          args.state_file, file=sys.stderr)
    return 1

  if args.state_file and os.path.exists(args.state_file):
    os.remove(args.state_file)
  print('Uploaded {} bytes to {}'.format(channel.position, args.destination))
  return 0
