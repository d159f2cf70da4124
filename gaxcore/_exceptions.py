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


"""
Exceptions
===========
"""


class GaxError(Exception):
    """Base gaxcore Error class for internal exceptions."""

    def __init__(self, message, *, detail=None, code=None):
        super().__init__(message)

        # Additional details on the error.
        self.message = message
        self.detail = detail
        # The gRPC status code of the failure, when there is one.
        self.code = code


class InvalidArgumentError(GaxError):
    """A bad argument was passed, such as a negative page size or an
    unparsable endpoint.

    Raised before any remote call is issued."""

    def __init__(self, message, detail=None):
        super().__init__(message, detail=detail)


class ApiCallError(GaxError):
    """A remote call failed with a status code that is not eligible for retry."""

    def __init__(self, message, detail=None, code=None):
        super().__init__(message, detail=detail, code=code)

    @classmethod
    def from_rpc_error(cls, rpc_error, method_name=''):
        code, details = _rpc_error_status(rpc_error)
        code_name = code.name if code is not None else 'UNKNOWN'
        return cls(f"Call to [{method_name}] failed with [{code_name}]: {details}",
                   detail=details, code=code)


class DeadlineExceededError(GaxError):
    """Retries stopped because the call deadline or the retry policy's total
    expiration elapsed.

    The code and details of the last transport failure, if any, are kept.
    """

    def __init__(self, message, detail=None, code=None, attempts=0):
        super().__init__(message, detail=detail, code=code)

        self.attempts = attempts


class CancelledError(GaxError):
    """A call or a paged listing was abandoned because its cancellation token fired."""

    def __init__(self, message, detail=None):
        super().__init__(message, detail=detail)


def _rpc_error_status(rpc_error):
    """Extracts ``(code, details)`` from a :class:`grpc.RpcError`.

    Errors raised by a gRPC call implement the :class:`grpc.Call` interface,
    but a bare :class:`grpc.RpcError` does not have to.
    """
    code = rpc_error.code() if callable(getattr(rpc_error, 'code', None)) else None
    details = rpc_error.details() if callable(getattr(rpc_error, 'details', None)) else str(rpc_error)
    return code, details
