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

# pylint: disable=redefined-outer-name


import asyncio
from concurrent import futures
import threading

from google.longrunning import operations_pb2
from google.protobuf import empty_pb2
import grpc
import pytest

from gaxcore._exceptions import ApiCallError, InvalidArgumentError
from gaxcore.client.channel import setup_channel
from gaxcore.client.channel_pool import ChannelPool, ServiceEndpoint, create_channel
from gaxcore.client.channel_pool import default_channel_pool
from gaxcore.client.operations import OperationsClient
from gaxcore.client.retry import CallSettings
from gaxcore.settings import CLIENT_INFO_HEADER_NAME


class OperationsServicer:
    """In-memory google.longrunning.Operations implementation."""

    def __init__(self, operation_names, page_size=2):
        self.operations = {name: operations_pb2.Operation(name=name) for name in operation_names}
        self.default_page_size = page_size
        self.cancelled = []
        self.deleted = []
        self.list_requests = []
        self.metadata = []
        self.failures = {}
        self._lock = threading.Lock()

    def _maybe_fail(self, method_name, context):
        self.metadata.append(dict(context.invocation_metadata()))
        with self._lock:
            remaining = self.failures.get(method_name, 0)
            if remaining:
                self.failures[method_name] = remaining - 1
        if remaining:
            context.abort(grpc.StatusCode.UNAVAILABLE, 'server warming up')

    def ListOperations(self, request, context):
        self._maybe_fail('ListOperations', context)
        self.list_requests.append((request.name, request.filter, request.page_token, request.page_size))

        names = sorted(name for name in self.operations if name.startswith(request.name))
        start = int(request.page_token) if request.page_token else 0
        end = start + (request.page_size or self.default_page_size)

        response = operations_pb2.ListOperationsResponse()
        response.operations.extend(self.operations[name] for name in names[start:end])
        if end < len(names):
            response.next_page_token = str(end)
        return response

    def GetOperation(self, request, context):
        self._maybe_fail('GetOperation', context)
        try:
            return self.operations[request.name]
        except KeyError:
            context.abort(grpc.StatusCode.NOT_FOUND, f'no operation {request.name}')

    def DeleteOperation(self, request, context):
        self._maybe_fail('DeleteOperation', context)
        self.deleted.append(request.name)
        self.operations.pop(request.name, None)
        return empty_pb2.Empty()

    def CancelOperation(self, request, context):
        self._maybe_fail('CancelOperation', context)
        self.cancelled.append(request.name)
        return empty_pb2.Empty()


def add_operations_servicer(servicer, server):
    handlers = {
        'ListOperations': grpc.unary_unary_rpc_method_handler(
            servicer.ListOperations,
            request_deserializer=operations_pb2.ListOperationsRequest.FromString,
            response_serializer=operations_pb2.ListOperationsResponse.SerializeToString),
        'GetOperation': grpc.unary_unary_rpc_method_handler(
            servicer.GetOperation,
            request_deserializer=operations_pb2.GetOperationRequest.FromString,
            response_serializer=operations_pb2.Operation.SerializeToString),
        'DeleteOperation': grpc.unary_unary_rpc_method_handler(
            servicer.DeleteOperation,
            request_deserializer=operations_pb2.DeleteOperationRequest.FromString,
            response_serializer=empty_pb2.Empty.SerializeToString),
        'CancelOperation': grpc.unary_unary_rpc_method_handler(
            servicer.CancelOperation,
            request_deserializer=operations_pb2.CancelOperationRequest.FromString,
            response_serializer=empty_pb2.Empty.SerializeToString),
    }
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler('google.longrunning.Operations', handlers),))


@pytest.fixture
def servicer():
    return OperationsServicer([f'operations/op-{index}' for index in range(1, 6)])


@pytest.fixture
def remote(servicer):
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=4))
    add_operations_servicer(servicer, server)
    port = server.add_insecure_port('localhost:0')
    server.start()
    try:
        yield f'localhost:{port}'
    finally:
        server.stop(None)


@pytest.fixture
def channel(remote):
    channel = setup_channel(f'grpc://{remote}')
    try:
        yield channel
    finally:
        channel.close()


@pytest.fixture
def client(channel):
    with OperationsClient.from_channel(channel) as client:
        yield client


def test_list_operations_over_three_pages(servicer, client):
    operations = client.list_operations('operations/')

    names = [operation.name for operation in operations]

    assert names == [f'operations/op-{index}' for index in range(1, 6)]
    assert [page_token for _, _, page_token, _ in servicer.list_requests] == ['', '2', '4']


def test_list_operations_forwards_filter_and_page_size(servicer, client):
    list(client.list_operations('operations/', filter_='done=true', page_size=4))

    assert servicer.list_requests == [('operations/', 'done=true', '', 4),
                                      ('operations/', 'done=true', '4', 4)]


def test_list_operations_read_page(client):
    page = client.list_operations('operations/').read_page(3)

    assert [operation.name for operation in page] == ['operations/op-1', 'operations/op-2',
                                                      'operations/op-3']
    assert page.next_page_token == '3'


def test_get_operation(client):
    operation = client.get_operation('operations/op-3')

    assert operation.name == 'operations/op-3'


def test_get_missing_operation_is_not_retried(servicer, client):
    with pytest.raises(ApiCallError) as excinfo:
        client.get_operation('operations/op-42')

    assert excinfo.value.code == grpc.StatusCode.NOT_FOUND
    assert len(servicer.metadata) == 1


def test_cancel_and_delete_operation(servicer, client):
    client.cancel_operation('operations/op-1')
    client.delete_operation('operations/op-2')

    assert servicer.cancelled == ['operations/op-1']
    assert servicer.deleted == ['operations/op-2']
    assert 'operations/op-2' not in servicer.operations


def test_retries_on_unavailable(servicer, client):
    servicer.failures['GetOperation'] = 2

    operation = client.get_operation('operations/op-1')

    assert operation.name == 'operations/op-1'
    assert len(servicer.metadata) == 3


def test_paging_retries_on_unavailable(servicer, client):
    servicer.failures['ListOperations'] = 1

    names = [operation.name for operation in client.list_operations('operations/')]

    assert len(names) == 5


@pytest.mark.parametrize('method_name', ['get_operation', 'delete_operation', 'cancel_operation',
                                         'list_operations'])
def test_empty_name_is_rejected_before_any_call(servicer, client, method_name):
    with pytest.raises(InvalidArgumentError):
        getattr(client, method_name)('')

    assert servicer.metadata == []


def test_client_info_header_is_sent(servicer, client):
    client.get_operation('operations/op-1')

    assert CLIENT_INFO_HEADER_NAME in servicer.metadata[0]


def test_call_settings_metadata_is_sent(servicer, client):
    client.get_operation('operations/op-1', CallSettings(metadata=[('x-request-origin', 'tests')]))

    assert servicer.metadata[0]['x-request-origin'] == 'tests'


def test_request_interceptors_rewrite_requests_and_settings(servicer, channel):
    seen = []

    def prefix_names(request, call_settings):
        seen.append(type(request).__name__)
        rewritten = type(request)()
        rewritten.CopyFrom(request)
        rewritten.name = f'operations/{request.name}'
        return rewritten, CallSettings.merge(call_settings, CallSettings(metadata=[('x-tenant', 'blue')]))

    client = OperationsClient.from_channel(channel, interceptors=[prefix_names])

    operation = client.get_operation('op-4')

    assert operation.name == 'operations/op-4'
    assert seen == ['GetOperationRequest']
    assert servicer.metadata[0]['x-tenant'] == 'blue'


def test_async_operations(servicer, client):
    async def _run():
        operation = await client.get_operation_async('operations/op-2')
        await client.cancel_operation_async('operations/op-3')
        await client.delete_operation_async('operations/op-5')
        names = [operation.name async for operation in client.list_operations_async('operations/')]
        return operation, names

    operation, names = asyncio.run(_run())

    assert operation.name == 'operations/op-2'
    assert servicer.cancelled == ['operations/op-3']
    assert names == [f'operations/op-{index}' for index in range(1, 5)]


def test_async_failures_are_reported(client):
    with pytest.raises(ApiCallError) as excinfo:
        asyncio.run(client.get_operation_async('operations/op-42'))

    assert excinfo.value.code == grpc.StatusCode.NOT_FOUND


def test_create_uses_the_given_pool(remote):
    pool = ChannelPool(channel_factory=create_channel)
    try:
        first = OperationsClient.create(remote, channel_pool=pool)
        second = OperationsClient.create(ServiceEndpoint.parse(remote), channel_pool=pool)

        assert first.channel is second.channel
        assert len(pool) == 1

        first.close()
        assert second.get_operation('operations/op-1').name == 'operations/op-1'

        with pytest.raises(InvalidArgumentError):
            first.get_operation('operations/op-1')
    finally:
        pool.shutdown_all()


def test_create_async_uses_the_given_pool(remote):
    pool = ChannelPool(channel_factory=create_channel)

    async def _run():
        client = await OperationsClient.create_async(remote, channel_pool=pool)
        return await client.get_operation_async('operations/op-5')

    try:
        assert asyncio.run(_run()).name == 'operations/op-5'
    finally:
        pool.shutdown_all()


def test_create_without_a_pool_uses_the_pool_of_the_configured_scopes(remote):
    settings = OperationsClient.default_settings()
    assert settings.scopes == ('https://www.googleapis.com/auth/cloud-platform',)

    pool = default_channel_pool(settings.scopes)
    try:
        client = OperationsClient.create(remote, settings=settings)

        assert pool.get_channel(ServiceEndpoint.parse(remote)) is client.channel
        assert client.get_operation('operations/op-3').name == 'operations/op-3'
    finally:
        pool.shutdown_all()


def test_create_requires_an_endpoint():
    with pytest.raises(InvalidArgumentError):
        OperationsClient.create(channel_pool=ChannelPool(channel_factory=create_channel))


def test_interceptors_can_be_added_later(servicer, client):
    client.add_interceptor(lambda request, call_settings: (
        request, CallSettings(metadata=[('x-late', 'yes')])))

    client.get_operation('operations/op-1')

    assert servicer.metadata[0]['x-late'] == 'yes'
