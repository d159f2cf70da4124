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
ChannelPool
===========

Long-lived registry of gRPC channels, one per service endpoint.
"""

import asyncio
import logging
import threading
from typing import Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import urlparse

import grpc

from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.channel import setup_channel
from gaxcore.settings import DEFAULT_INSECURE_PORT, DEFAULT_SERVICE_PORT
from gaxcore.utils import insecure_uri_schemes, secure_uri_schemes


class ServiceEndpoint:
    """A ``(host, port)`` pair identifying a remote service."""

    def __init__(self, host: str, port: int):
        if not host:
            raise InvalidArgumentError("Service endpoint requires a host")
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"Service endpoint port is not a number: [{port}]")
        if not 0 < port < 65536:
            raise InvalidArgumentError(f"Service endpoint port out of range: [{port}]")

        self.__host = host
        self.__port = port

    @classmethod
    def parse(cls, address: str, default_port: int=DEFAULT_SERVICE_PORT) -> 'ServiceEndpoint':
        """Parses ``host:port`` (or a ``scheme://host:port`` URL)."""
        if '://' not in address:
            address = f'//{address}'
        url = urlparse(address)
        try:
            port = url.port
        except ValueError:
            raise InvalidArgumentError(f"Invalid port in service address: [{address}]")
        if not url.hostname:
            raise InvalidArgumentError(f"Invalid service address: [{address}]")
        return cls(url.hostname, port or default_port)

    @property
    def host(self) -> str:
        return self.__host

    @property
    def port(self) -> int:
        return self.__port

    def __eq__(self, other):
        if not isinstance(other, ServiceEndpoint):
            return NotImplemented
        return self.__host == other.host and self.__port == other.port

    def __hash__(self):
        return hash((self.__host, self.__port))

    def __str__(self):
        return f'{self.__host}:{self.__port}'

    def __repr__(self):
        return f"ServiceEndpoint(host={self.__host!r}, port={self.__port!r})"


ChannelFactory = Callable[[ServiceEndpoint, Tuple[str, ...]], grpc.Channel]


def create_channel(endpoint: ServiceEndpoint, scopes: Tuple[str, ...]=(),
                   secure: Optional[bool]=None, **kwargs) -> grpc.Channel:
    """Opens a channel to `endpoint`.

    Unless `secure` says otherwise, the well-known service port is reached
    over TLS and anything else in plain text. `scopes` are accepted so that
    credential-aware factories share this signature; no credentials are
    attached here. Extra keyword arguments go to :func:`setup_channel`.
    """
    if secure is None:
        secure = endpoint.port == DEFAULT_SERVICE_PORT

    scheme = 'grpcs' if secure else 'grpc'
    return setup_channel(f'{scheme}://{endpoint}', **kwargs)


def endpoint_from_url(remote_url: str) -> Tuple[ServiceEndpoint, bool]:
    """Splits a ``grpc://`` / ``grpcs://`` remote URL into an endpoint and
    whether it must be reached over TLS."""
    url = urlparse(remote_url)
    if url.scheme in secure_uri_schemes:
        secure = True
    elif url.scheme in insecure_uri_schemes:
        secure = False
    else:
        raise InvalidArgumentError(f"Given remote does not specify a supported protocol: [{remote_url}]")

    default_port = DEFAULT_SERVICE_PORT if secure else DEFAULT_INSECURE_PORT
    return ServiceEndpoint.parse(remote_url, default_port=default_port), secure


class ChannelPool:
    """Caches channels by endpoint for the lifetime of the pool.

    Channels are created lazily on first request for an endpoint, at most
    once per endpoint even under concurrent first access, and only torn down
    by :meth:`shutdown_all`. A failed creation leaves no entry behind, so the
    next request tries again.

    The pool is meant to be created once and handed by reference to every
    client that should share connections.
    """

    def __init__(self, scopes: Iterable[str]=(), channel_factory: Optional[ChannelFactory]=None):
        self.__logger = logging.getLogger(__name__)

        self.__scopes = tuple(scopes)
        self.__channel_factory = channel_factory if channel_factory is not None else create_channel

        self.__channels: Dict[ServiceEndpoint, grpc.Channel] = {}
        # Guards the maps and the generation; never held while a channel is being created:
        self.__registry_lock = threading.Lock()
        # One creation lock per endpoint, kept across shutdowns:
        self.__endpoint_locks: Dict[ServiceEndpoint, threading.Lock] = {}
        # Bumped by every shutdown; creations spanning one are discarded:
        self.__generation = 0

    @property
    def scopes(self) -> Tuple[str, ...]:
        return self.__scopes

    def __len__(self):
        with self.__registry_lock:
            return len(self.__channels)

    def get_channel(self, endpoint: ServiceEndpoint) -> grpc.Channel:
        """Returns the pooled channel for `endpoint`, creating it if needed.

        A channel whose creation overlapped a :meth:`shutdown_all` is closed
        instead of being cached, and creation starts over.

        Raises:
            Whatever the channel factory raises; nothing is cached then.
        """
        if not isinstance(endpoint, ServiceEndpoint):
            raise InvalidArgumentError(f"Expected a ServiceEndpoint, got [{endpoint!r}]")

        while True:
            with self.__registry_lock:
                channel = self.__channels.get(endpoint)
                if channel is not None:
                    return channel
                endpoint_lock = self.__endpoint_locks.setdefault(endpoint, threading.Lock())

            with endpoint_lock:
                with self.__registry_lock:
                    channel = self.__channels.get(endpoint)
                    generation = self.__generation
                if channel is not None:
                    return channel

                self.__logger.debug(f"Creating pooled channel for [{endpoint}]")
                channel = self.__channel_factory(endpoint, self.__scopes)

                with self.__registry_lock:
                    stale = generation != self.__generation
                    if not stale:
                        self.__channels[endpoint] = channel

            if not stale:
                self.__logger.info(f"Created pooled channel for [{endpoint}]")
                return channel

            self.__logger.debug(f"Pool was shut down while creating channel for [{endpoint}], "
                                "closing it and starting over")
            channel.close()

    async def get_channel_async(self, endpoint: ServiceEndpoint) -> grpc.Channel:
        """Awaitable form of :meth:`get_channel`; creation runs in the
        default executor so the event loop is never blocked."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.get_channel, endpoint)

    def shutdown_all(self) -> None:
        """Closes every channel created by this pool and forgets them.

        Channels obtained without the pool are unaffected; later calls to
        :meth:`get_channel` create fresh channels.
        """
        with self.__registry_lock:
            channels, self.__channels = self.__channels, {}
            self.__generation += 1

        for endpoint, channel in channels.items():
            self.__logger.debug(f"Closing pooled channel for [{endpoint}]")
            channel.close()

        if channels:
            self.__logger.info(f"Closed [{len(channels)}] pooled channel(s)")

    async def shutdown_all_async(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.shutdown_all)


_default_pools: Dict[Tuple[str, ...], ChannelPool] = {}
_default_pools_lock = threading.Lock()


def default_channel_pool(scopes: Iterable[str]=()) -> ChannelPool:
    """Returns the process-wide pool for `scopes`, creating it on first use.

    Clients created without an explicit pool share these; shutting one down
    affects every such client in the process.
    """
    key = tuple(scopes)
    with _default_pools_lock:
        pool = _default_pools.get(key)
        if pool is None:
            pool = ChannelPool(scopes=key)
            _default_pools[key] = pool
        return pool
