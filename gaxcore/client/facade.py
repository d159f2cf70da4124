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
Client facades
==============

Base class for per-service clients. A facade binds one :class:`ApiCall` per
RPC method of the service to a channel and to that method's call settings,
and runs every request through its request interceptors before dispatch::

    from gaxcore.client.operations import OperationsClient

    with OperationsClient.create(endpoint='localhost:50051') as client:
        for operation in client.list_operations('operations'):
            print(operation.name)
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import grpc

from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.api_call import ApiCall
from gaxcore.client.channel_pool import ChannelPool, ServiceEndpoint, default_channel_pool
from gaxcore.client.paging import AsyncPagedSequence, PagedSequence
from gaxcore.client.retry import CallSettings
from gaxcore.client.service_settings import ServiceSettings, load_service_settings


RequestInterceptor = Callable[[Any, Optional[CallSettings]], Tuple[Any, Optional[CallSettings]]]


class ClientFacade:
    """Common plumbing of service clients.

    Subclasses name their service and list its unary methods along with
    their request and response message classes in ``METHODS``.
    """

    # Fully qualified gRPC service name, e.g. ``google.longrunning.Operations``:
    SERVICE_NAME = ''
    # ``host:port`` used by :meth:`create` when no endpoint is given:
    DEFAULT_ENDPOINT: Optional[str] = None
    DEFAULT_SCOPES: Tuple[str, ...] = ()
    # Bundled client configuration holding the per-method defaults:
    DEFAULT_CONFIG = ''
    # Method name -> (request class, response class):
    METHODS: Dict[str, Tuple[Any, Any]] = {}

    def __init__(self, channel: grpc.Channel, settings: Optional[ServiceSettings]=None,
                 interceptors: Iterable[RequestInterceptor]=()):
        """Initializes a new facade over `channel`.

        Args:
            channel (grpc.Channel): channel to the service. The facade never
                closes it.
            settings (ServiceSettings): per-method call settings, the bundled
                defaults of the service if unset.
            interceptors (list): callables taking and returning a
                ``(request, call_settings)`` pair, applied in order before
                each call.
        """
        self._logger = logging.getLogger(__name__)

        if settings is None:
            settings = self.default_settings()

        self.channel = channel
        self.settings = settings
        self._interceptors: List[RequestInterceptor] = list(interceptors)

        self.__api_calls: Optional[Dict[str, ApiCall]] = {}

    @classmethod
    def default_settings(cls) -> ServiceSettings:
        if not cls.DEFAULT_CONFIG:
            raise InvalidArgumentError(f"[{cls.__name__}] has no default client configuration")
        return load_service_settings(cls.DEFAULT_CONFIG)

    @classmethod
    def default_endpoint(cls, settings: Optional[ServiceSettings]=None) -> Optional[ServiceEndpoint]:
        if cls.DEFAULT_ENDPOINT:
            return ServiceEndpoint.parse(cls.DEFAULT_ENDPOINT)
        if settings is not None:
            return settings.endpoint
        return None

    @classmethod
    def create(cls, endpoint: Union[ServiceEndpoint, str, None]=None,
               settings: Optional[ServiceSettings]=None,
               channel_pool: Optional[ChannelPool]=None,
               interceptors: Iterable[RequestInterceptor]=()) -> 'ClientFacade':
        """Creates a client whose channel comes from `channel_pool`.

        Args:
            endpoint: service endpoint, or ``host:port``. Defaults to the
                service's default endpoint.
            settings (ServiceSettings): per-method call settings.
            channel_pool (ChannelPool): pool to take the channel from; the
                process-wide pool for the scopes of `settings` if unset, or
                for the service's default scopes when those are empty.

        Raises:
            InvalidArgumentError: If no endpoint is given and the service has
                no default one.
        """
        if settings is None:
            settings = cls.default_settings()
        endpoint = cls._resolve_endpoint(endpoint, settings)
        if channel_pool is None:
            channel_pool = default_channel_pool(settings.scopes or cls.DEFAULT_SCOPES)

        return cls(channel_pool.get_channel(endpoint), settings=settings, interceptors=interceptors)

    @classmethod
    async def create_async(cls, endpoint: Union[ServiceEndpoint, str, None]=None,
                           settings: Optional[ServiceSettings]=None,
                           channel_pool: Optional[ChannelPool]=None,
                           interceptors: Iterable[RequestInterceptor]=()) -> 'ClientFacade':
        """Awaitable form of :meth:`create`."""
        if settings is None:
            settings = cls.default_settings()
        endpoint = cls._resolve_endpoint(endpoint, settings)
        if channel_pool is None:
            channel_pool = default_channel_pool(settings.scopes or cls.DEFAULT_SCOPES)

        channel = await channel_pool.get_channel_async(endpoint)
        return cls(channel, settings=settings, interceptors=interceptors)

    @classmethod
    def from_channel(cls, channel: grpc.Channel, settings: Optional[ServiceSettings]=None,
                     interceptors: Iterable[RequestInterceptor]=()) -> 'ClientFacade':
        """Creates a client over a channel managed by the caller."""
        return cls(channel, settings=settings, interceptors=interceptors)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self) -> None:
        """Releases the method bindings. The channel is left open."""
        self.__api_calls = None
        self._logger.debug(f"Closed [{type(self).__name__}] client")

    def add_interceptor(self, interceptor: RequestInterceptor) -> None:
        self._interceptors.append(interceptor)

    # --- Private API ---

    @classmethod
    def _resolve_endpoint(cls, endpoint, settings: Optional[ServiceSettings]) -> ServiceEndpoint:
        if endpoint is None:
            endpoint = cls.default_endpoint(settings)
        if endpoint is None:
            raise InvalidArgumentError(f"No endpoint given for [{cls.SERVICE_NAME}] "
                                       "and it has no default one")
        if isinstance(endpoint, str):
            endpoint = ServiceEndpoint.parse(endpoint)
        return endpoint

    def _build_api_call(self, method_name: str, request_cls, response_cls) -> ApiCall:
        return ApiCall.from_grpc(self.channel, f'/{self.SERVICE_NAME}/{method_name}',
                                 request_serializer=request_cls.SerializeToString,
                                 response_deserializer=response_cls.FromString,
                                 settings=self.settings.get(method_name))

    def _api_call(self, method_name: str) -> ApiCall:
        if self.__api_calls is None:
            raise InvalidArgumentError(f"[{type(self).__name__}] client is closed")

        api_call = self.__api_calls.get(method_name)
        if api_call is None:
            try:
                request_cls, response_cls = self.METHODS[method_name]
            except KeyError:
                raise InvalidArgumentError(f"Unknown method [{method_name}] for [{self.SERVICE_NAME}]")
            api_call = self._build_api_call(method_name, request_cls, response_cls)
            self.__api_calls[method_name] = api_call
            self._logger.debug(f"Bound [{api_call.method_name}] for [{type(self).__name__}]")
        return api_call

    def _prepare(self, request, call_settings: Optional[CallSettings]):
        for interceptor in self._interceptors:
            request, call_settings = interceptor(request, call_settings)
        return request, call_settings

    def _call(self, method_name: str, request, call_settings: Optional[CallSettings]=None):
        api_call = self._api_call(method_name)
        request, call_settings = self._prepare(request, call_settings)
        return api_call.invoke(request, call_settings)

    async def _call_async(self, method_name: str, request,
                          call_settings: Optional[CallSettings]=None):
        api_call = self._api_call(method_name)
        request, call_settings = self._prepare(request, call_settings)
        return await api_call.invoke_async(request, call_settings)

    def _paged(self, method_name: str, request, items_field: str,
               page_token: Optional[str]=None, page_size: Optional[int]=None,
               call_settings: Optional[CallSettings]=None) -> PagedSequence:
        api_call = self._api_call(method_name)
        request, call_settings = self._prepare(request, call_settings)
        return PagedSequence(api_call, request, call_settings, items_field=items_field,
                             page_token=page_token, page_size=page_size)

    def _paged_async(self, method_name: str, request, items_field: str,
                     page_token: Optional[str]=None, page_size: Optional[int]=None,
                     call_settings: Optional[CallSettings]=None) -> AsyncPagedSequence:
        api_call = self._api_call(method_name)
        request, call_settings = self._prepare(request, call_settings)
        return AsyncPagedSequence(api_call, request, call_settings, items_field=items_field,
                                  page_token=page_token, page_size=page_size)
