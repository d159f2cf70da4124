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


from enum import Enum

import grpc


class ExpirationType(Enum):
    # No deadline at all.
    NONE = 'none'
    # Relative to the moment the call starts.
    TIMEOUT = 'timeout'
    # Absolute point in time.
    DEADLINE = 'deadline'


# Codes considered transient for idempotent methods.
IDEMPOTENT_STATUS_CODES = (
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.UNAVAILABLE,
)


STATUS_CODE_NAMES = {code.name: code for code in grpc.StatusCode}
