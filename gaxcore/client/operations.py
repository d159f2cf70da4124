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


from typing import Optional

from google.longrunning import operations_pb2
from google.protobuf import empty_pb2

from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.facade import ClientFacade
from gaxcore.client.paging import AsyncPagedSequence, PagedSequence
from gaxcore.client.retry import CallSettings


class OperationsClient(ClientFacade):
    """Client for the ``google.longrunning.Operations`` service.

    Long-running operations are exposed by many APIs next to their own
    service, so there is no default endpoint: use :meth:`create` with an
    endpoint or :meth:`from_channel` with the API's channel.
    """

    SERVICE_NAME = 'google.longrunning.Operations'
    DEFAULT_CONFIG = 'longrunning-operations'
    METHODS = {
        'ListOperations': (operations_pb2.ListOperationsRequest,
                           operations_pb2.ListOperationsResponse),
        'GetOperation': (operations_pb2.GetOperationRequest,
                         operations_pb2.Operation),
        'DeleteOperation': (operations_pb2.DeleteOperationRequest,
                            empty_pb2.Empty),
        'CancelOperation': (operations_pb2.CancelOperationRequest,
                            empty_pb2.Empty),
    }

    # --- Public API ---

    def list_operations(self, name: str, filter_: str='', page_token: Optional[str]=None,
                        page_size: Optional[int]=None,
                        call_settings: Optional[CallSettings]=None) -> PagedSequence:
        """Lists the operations matching `filter_` under `name`.

        Args:
            name (str): name of the operation collection.
            filter_ (str): server-side filter, empty for all operations.
            page_token (str): token to resume listing from.
            page_size (int): operations per page; the server decides if unset.
            call_settings (CallSettings): applied to every page fetch.

        Returns:
            PagedSequence: lazily fetched :obj:`Operation` messages.
        """
        request = operations_pb2.ListOperationsRequest(name=_checked_name(name), filter=filter_)
        return self._paged('ListOperations', request, 'operations', page_token=page_token,
                           page_size=page_size, call_settings=call_settings)

    def list_operations_async(self, name: str, filter_: str='', page_token: Optional[str]=None,
                              page_size: Optional[int]=None,
                              call_settings: Optional[CallSettings]=None) -> AsyncPagedSequence:
        request = operations_pb2.ListOperationsRequest(name=_checked_name(name), filter=filter_)
        return self._paged_async('ListOperations', request, 'operations', page_token=page_token,
                                 page_size=page_size, call_settings=call_settings)

    def get_operation(self, name: str,
                      call_settings: Optional[CallSettings]=None) -> operations_pb2.Operation:
        """Fetches the latest state of an operation."""
        request = operations_pb2.GetOperationRequest(name=_checked_name(name))
        return self._call('GetOperation', request, call_settings)

    async def get_operation_async(self, name: str,
                                  call_settings: Optional[CallSettings]=None) -> operations_pb2.Operation:
        request = operations_pb2.GetOperationRequest(name=_checked_name(name))
        return await self._call_async('GetOperation', request, call_settings)

    def delete_operation(self, name: str, call_settings: Optional[CallSettings]=None) -> None:
        """Tells the server the client is no longer interested in the
        operation's result. It does not cancel the operation."""
        request = operations_pb2.DeleteOperationRequest(name=_checked_name(name))
        self._call('DeleteOperation', request, call_settings)

    async def delete_operation_async(self, name: str,
                                     call_settings: Optional[CallSettings]=None) -> None:
        request = operations_pb2.DeleteOperationRequest(name=_checked_name(name))
        await self._call_async('DeleteOperation', request, call_settings)

    def cancel_operation(self, name: str, call_settings: Optional[CallSettings]=None) -> None:
        """Starts asynchronous cancellation of an operation.

        Success only means the server accepted the request; poll the
        operation with :meth:`get_operation` to find out whether it was
        actually cancelled.
        """
        request = operations_pb2.CancelOperationRequest(name=_checked_name(name))
        self._call('CancelOperation', request, call_settings)

    async def cancel_operation_async(self, name: str,
                                     call_settings: Optional[CallSettings]=None) -> None:
        request = operations_pb2.CancelOperationRequest(name=_checked_name(name))
        await self._call_async('CancelOperation', request, call_settings)


def _checked_name(name: str) -> str:
    if not name:
        raise InvalidArgumentError("Operation name must not be empty")
    return name
