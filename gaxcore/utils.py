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


from datetime import timedelta
from typing import Any, Dict, Iterable, List, Mapping

import grpc

from gaxcore._enums import STATUS_CODE_NAMES
from gaxcore._exceptions import InvalidArgumentError


secure_uri_schemes = ["https", "grpcs"]
insecure_uri_schemes = ["http", "grpc"]


def millis(value: float) -> timedelta:
    """Converts a number of milliseconds, as found in client configs, to a
    :class:`datetime.timedelta`."""
    return timedelta(milliseconds=value)


def status_codes_from_names(names: Iterable[str]) -> List[grpc.StatusCode]:
    """Translates status code names (``'UNAVAILABLE'``) into
    :class:`grpc.StatusCode` values.

    Raises:
        InvalidArgumentError: If a name isn't a known status code.
    """
    codes = []
    for name in names:
        try:
            codes.append(STATUS_CODE_NAMES[name])
        except KeyError:
            raise InvalidArgumentError(f"Unknown status code name: [{name}]")
    return codes


def merge_config(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merges two configuration mappings.

    Values from `override` win; nested mappings are merged key by key rather
    than replaced. Neither input is modified.
    """
    merged: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def read_file(file_path):
    """Loads raw file content in memory.

    Args:
        file_path (str): path to the target file.

    Returns:
        bytes: Raw file's content until EOF.

    Raises:
        OSError: If `file_path` does not exist or is not readable.
    """
    with open(file_path, 'rb') as byte_file:
        return byte_file.read()
