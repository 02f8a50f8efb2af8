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

import setuptools

import resumable

with open('README.md', 'r') as f:
  long_description = f.read()

setuptools.setup(
  name='resumable-upload',
  version=resumable.__version__,
  author='Google',
  description='Resumable, chunked uploads to cloud storage.',
  long_description=long_description,
  long_description_content_type='text/markdown',
  packages=setuptools.find_packages(exclude=['tests', 'tests.*']),
  install_requires=[
      'PyYAML',
      'typing_extensions',
  ],
  extras_require={
      'gcs': [
          'google-auth',
          'google-api-core',
          'google-cloud-storage',
          'requests',
      ],
      's3': [
          'boto3',
          'botocore',
      ],
      'test': [
          'pytest',
          'pytest-mock',
          'google-auth',
          'google-api-core',
          'google-cloud-storage',
          'requests',
          'boto3',
          'botocore',
      ],
  },
  scripts=['resumable-upload'],
  classifiers=[
      'Programming Language :: Python :: 3',
      'License :: OSI Approved :: Apache Software License',
      'Operating System :: POSIX :: Linux',
      'Operating System :: MacOS :: MacOS X',
      'Operating System :: Microsoft :: Windows',
  ],
  python_requires='>=3.9',
)
