# Copyright (C) 2019 Bloomberg LP
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

from collections import namedtuple
from urllib.parse import urlparse
from typing import Any, List, Optional, Sequence, TYPE_CHECKING, Tuple, Union
import logging

import grpc

from gaxcore._exceptions import InvalidArgumentError
from gaxcore.settings import CLIENT_INFO_HEADER_NAME, CLIENT_INFO_HEADER_VALUE
from gaxcore.settings import DEFAULT_INSECURE_PORT
from gaxcore.utils import insecure_uri_schemes, read_file, secure_uri_schemes


class _ClientCallDetails(
        namedtuple('_ClientCallDetails',
                   ('method', 'timeout', 'credentials', 'metadata', 'wait_for_ready',)),
        grpc.ClientCallDetails):
    pass


def setup_channel(remote_url: str,
                  client_key: Optional[str]=None, client_cert: Optional[str]=None,
                  server_cert: Optional[str]=None,
                  options: Optional[Sequence[Tuple[str, Any]]]=None):
    """Creates a new gRPC client communication chanel.

    If `remote_url` does not point to a socket and does not specify a
    port number, defaults 50051.

    Args:
        remote_url (str): URL for the remote, including protocol and,
            if not a Unix domain socket, a port.
        server_cert(str): TLS certificate chain file path.
        client_key (str): TLS root certificate file path.
        client_cert (str): TLS private key file path.
        options (list): gRPC channel arguments.

    Returns:
        Channel: Client Channel to be used in order to access the server
            at `remote_url`.

    Raises:
        InvalidArgumentError: On any input parsing error.
    """
    url = urlparse(remote_url)

    url_is_socket = (url.scheme == 'unix')
    if url_is_socket:
        remote = remote_url
    else:
        remote = f'{url.hostname}:{url.port or DEFAULT_INSECURE_PORT}'

    credentials_provided = any((server_cert, client_cert, client_key))

    interceptors = _create_interceptors()

    if url.scheme in insecure_uri_schemes or (url_is_socket and not credentials_provided):
        channel = grpc.insecure_channel(remote, options=options)

    elif url.scheme in secure_uri_schemes or (url_is_socket and credentials_provided):
        credentials = load_tls_channel_credentials(client_key, client_cert, server_cert)
        channel = grpc.secure_channel(remote, credentials, options=options)

    else:
        raise InvalidArgumentError("Given remote does not specify a protocol")

    logging.getLogger(__name__).debug(f"Opened channel to [{remote}]")

    for interceptor in interceptors:
        channel = grpc.intercept_channel(channel, interceptor)

    return channel


def load_tls_channel_credentials(client_key: Optional[str]=None,
                                 client_cert: Optional[str]=None,
                                 server_cert: Optional[str]=None) -> grpc.ChannelCredentials:
    """Loads TLS channel credentials from PEM files.

    Files left unspecified fall back to the gRPC runtime defaults (system
    root certificates, no client authentication).

    Raises:
        InvalidArgumentError: If a file can't be read, or if only one of the
            client key and certificate is given.
    """
    if bool(client_key) != bool(client_cert):
        raise InvalidArgumentError("A TLS client key requires a client certificate and vice versa")

    try:
        root_certificates = read_file(server_cert) if server_cert else None
        private_key = read_file(client_key) if client_key else None
        certificate_chain = read_file(client_cert) if client_cert else None
    except OSError as e:
        raise InvalidArgumentError(f"Given TLS details could not be loaded: {e}")

    return grpc.ssl_channel_credentials(root_certificates=root_certificates,
                                        private_key=private_key,
                                        certificate_chain=certificate_chain)


class ClientInfoInterceptor(grpc.UnaryUnaryClientInterceptor,
                            grpc.UnaryStreamClientInterceptor,
                            grpc.StreamUnaryClientInterceptor,
                            grpc.StreamStreamClientInterceptor):

    def __init__(self, header_value: str=CLIENT_INFO_HEADER_VALUE):
        """Appends the client library and runtime versions to each call.

        Args:
            header_value (str): Value of the ``x-goog-api-client`` header.
        """
        self.__header_field_name = CLIENT_INFO_HEADER_NAME
        self.__header_field_value = header_value

    def _amend_call_details(self, client_call_details):
        if client_call_details.metadata is not None:
            new_metadata = list(client_call_details.metadata)
        else:
            new_metadata = []

        new_metadata.append((self.__header_field_name,
                             self.__header_field_value))

        return _ClientCallDetails(client_call_details.method,
                                  client_call_details.timeout,
                                  client_call_details.credentials,
                                  new_metadata,
                                  client_call_details.wait_for_ready)

    def intercept_unary_unary(self, continuation, client_call_details, request):
        new_details = self._amend_call_details(client_call_details)

        return continuation(new_details, request)

    def intercept_unary_stream(self, continuation, client_call_details, request):
        new_details = self._amend_call_details(client_call_details)

        return continuation(new_details, request)

    def intercept_stream_unary(self, continuation, client_call_details, request_iterator):
        new_details = self._amend_call_details(client_call_details)

        return continuation(new_details, request_iterator)

    def intercept_stream_stream(self, continuation, client_call_details, request_iterator):
        new_details = self._amend_call_details(client_call_details)

        return continuation(new_details, request_iterator)


if TYPE_CHECKING:
    # pylint: disable=unsubscriptable-object
    InterceptorsList = List[
        Union[
            grpc.UnaryUnaryClientInterceptor[Any, Any],
            grpc.UnaryStreamClientInterceptor[Any, Any],
            grpc.StreamUnaryClientInterceptor[Any, Any],
            grpc.StreamStreamClientInterceptor[Any, Any]
        ]
    ]


def _create_interceptors() -> 'InterceptorsList':
    interceptors: 'InterceptorsList' = []
    interceptors.append(ClientInfoInterceptor())

    return interceptors
