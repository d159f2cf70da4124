# Copyright (C) 2021 Bloomberg LP
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#  <http://www.apache.org/licenses/LICENSE-2.0>
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


import os
import platform

import grpc


# Port used by public Google APIs, always served over TLS:
DEFAULT_SERVICE_PORT = 443

# Port used when a local remote URL does not specify one:
DEFAULT_INSECURE_PORT = 50051

# Name and version reported in the client-info header:
CLIENT_LIBRARY_NAME = 'gax'
CLIENT_LIBRARY_VERSION = '0.1.0'

# Header carrying client library and runtime versions:
CLIENT_INFO_HEADER_NAME = 'x-goog-api-client'
CLIENT_INFO_HEADER_VALUE = (f'gl-python/{platform.python_version()} '
                            f'{CLIENT_LIBRARY_NAME}/{CLIENT_LIBRARY_VERSION} '
                            f'grpc/{grpc.__version__}')

# Directory holding the bundled client configurations:
BUNDLED_CONFIGS_DIR = os.path.join(os.path.dirname(__file__), 'client', 'configs')

# Schema the client configurations are validated against:
CLIENT_CONFIG_SCHEMA_PATH = os.path.join(os.path.dirname(__file__), 'client', 'schemas',
                                         'client-config.yaml')

# Default number of results shown by the CLI list commands:
DEFAULT_CLI_MAX_RESULTS = 100

# Log record format used by the CLI:
LOG_RECORD_FORMAT = '%(asctime)s:[%(name)36.36s][%(levelname)5.5s]: %(message)s'
