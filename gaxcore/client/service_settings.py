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
Service settings
================

Per-method call settings of a service client, built from YAML client
configurations. Bundled configurations carry each service's own defaults::

    service: google.logging.v2.MetricsServiceV2
    endpoint: logging.googleapis.com:443
    retry-codes:
      idempotent: [DEADLINE_EXCEEDED, UNAVAILABLE]
      non-idempotent: []
    retry-params:
      default:
        initial-retry-delay-millis: 100
        ...
    methods:
      ListLogMetrics:
        retry-codes-name: idempotent
        retry-params-name: default
"""

import logging
import os
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from jsonschema import Draft7Validator, validators
from jsonschema.exceptions import ValidationError
# TODO: Use the standard library version of this when we drop support
# for Python 3.7
from typing_extensions import TypedDict
import yaml

from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.channel_pool import ServiceEndpoint
from gaxcore.client.retry import CallSettings, RetryPolicy
from gaxcore.settings import BUNDLED_CONFIGS_DIR, CLIENT_CONFIG_SCHEMA_PATH
from gaxcore.utils import merge_config


MethodConfig = TypedDict('MethodConfig', {
    'retry-codes-name': str,
    'retry-params-name': str,
})


class ServiceSettings:
    """Call settings for every method of a service, keyed by RPC method name.

    Instances are immutable: :meth:`replace` returns a modified copy.
    """

    def __init__(self, service_name: str, method_settings: Mapping[str, CallSettings],
                 endpoint: Optional[ServiceEndpoint]=None, scopes: Tuple[str, ...]=()):
        self.__service_name = service_name
        self.__method_settings = dict(method_settings)
        self.__endpoint = endpoint
        self.__scopes = tuple(scopes)

    @property
    def service_name(self) -> str:
        return self.__service_name

    @property
    def endpoint(self) -> Optional[ServiceEndpoint]:
        return self.__endpoint

    @property
    def scopes(self) -> Tuple[str, ...]:
        return self.__scopes

    @property
    def methods(self) -> List[str]:
        return list(self.__method_settings)

    def __contains__(self, method_name):
        return method_name in self.__method_settings

    def __iter__(self) -> Iterator[Tuple[str, CallSettings]]:
        return iter(self.__method_settings.items())

    def get(self, method_name: str) -> CallSettings:
        try:
            return self.__method_settings[method_name]
        except KeyError:
            raise InvalidArgumentError(f"No settings for method [{method_name}] "
                                       f"of [{self.__service_name}]")

    def replace(self, method_name: str, call_settings: CallSettings) -> 'ServiceSettings':
        if method_name not in self.__method_settings:
            raise InvalidArgumentError(f"Unknown method [{method_name}] for [{self.__service_name}]")
        method_settings = dict(self.__method_settings)
        method_settings[method_name] = call_settings
        return ServiceSettings(self.__service_name, method_settings,
                               endpoint=self.__endpoint, scopes=self.__scopes)

    def clone(self) -> 'ServiceSettings':
        return ServiceSettings(self.__service_name, self.__method_settings,
                               endpoint=self.__endpoint, scopes=self.__scopes)


def get_schema() -> Dict[str, Any]:
    with open(CLIENT_CONFIG_SCHEMA_PATH, encoding='utf-8') as schema_file:
        return yaml.safe_load(schema_file)


def get_validator(schema=None):
    if schema is None:
        schema = get_schema()

    GaxValidator = validators.create(
        meta_schema=Draft7Validator.META_SCHEMA,
        validators=dict(Draft7Validator.VALIDATORS),
        type_checker=Draft7Validator.TYPE_CHECKER
    )
    return GaxValidator(schema)


def bundled_configs() -> List[str]:
    """Names of the client configurations shipped with gaxcore."""
    return sorted(filename[:-len('.yaml')] for filename in os.listdir(BUNDLED_CONFIGS_DIR)
                  if filename.endswith('.yaml'))


def load_client_config(name_or_path: str) -> Dict[str, Any]:
    """Reads a client configuration, either bundled (by name) or from a file.

    Raises:
        InvalidArgumentError: If it can't be read or parsed.
    """
    path = name_or_path
    if not os.path.isfile(path):
        path = os.path.join(BUNDLED_CONFIGS_DIR, f'{name_or_path}.yaml')
    if not os.path.isfile(path):
        raise InvalidArgumentError(f"No client configuration named or found at [{name_or_path}]")

    try:
        with open(path, encoding='utf-8') as config_file:
            config = yaml.safe_load(config_file)
    except (OSError, yaml.YAMLError) as e:
        raise InvalidArgumentError(f"Could not read client configuration [{path}]: {e}")

    if not isinstance(config, dict):
        raise InvalidArgumentError(f"Client configuration [{path}] is not a mapping")
    return config


def validate_client_config(config: Mapping[str, Any]) -> None:
    """Checks `config` against the client configuration schema and the
    references between its sections.

    Raises:
        InvalidArgumentError: If the configuration is invalid.
    """
    try:
        get_validator().validate(instance=config)
    except ValidationError as e:
        raise InvalidArgumentError(f"Client configuration failed validation: {e.message}",
                                   detail=str(e))

    method_config: MethodConfig
    for method_name, method_config in config['methods'].items():
        if method_config['retry-codes-name'] not in config['retry-codes']:
            raise InvalidArgumentError(f"Method [{method_name}] refers to unknown retry codes "
                                       f"[{method_config['retry-codes-name']}]")
        if method_config['retry-params-name'] not in config['retry-params']:
            raise InvalidArgumentError(f"Method [{method_name}] refers to unknown retry parameters "
                                       f"[{method_config['retry-params-name']}]")


def construct_settings(config: Mapping[str, Any]) -> ServiceSettings:
    """Builds :class:`ServiceSettings` from a validated client configuration."""
    validate_client_config(config)

    retry_policies: Dict[Tuple[str, str], RetryPolicy] = {}
    method_settings = {}
    for method_name, method_config in config['methods'].items():
        key = (method_config['retry-codes-name'], method_config['retry-params-name'])
        if key not in retry_policies:
            retry_policies[key] = RetryPolicy.from_config(config['retry-codes'][key[0]],
                                                          config['retry-params'][key[1]])
        method_settings[method_name] = CallSettings.from_retry(retry_policies[key])

    endpoint = None
    if config.get('endpoint'):
        endpoint = ServiceEndpoint.parse(config['endpoint'])

    return ServiceSettings(config['service'], method_settings,
                           endpoint=endpoint, scopes=tuple(config.get('scopes', ())))


def load_service_settings(name_or_path: str,
                          overrides: Optional[Mapping[str, Any]]=None) -> ServiceSettings:
    """Loads a client configuration, merges `overrides` over it and builds
    the resulting settings.

    Args:
        name_or_path (str): bundled configuration name (for instance
            ``logging-metrics-v2``) or path to a YAML file.
        overrides (dict): a partial configuration of the same shape; nested
            sections are merged key by key.
    """
    config = load_client_config(name_or_path)
    if overrides:
        config = merge_config(config, overrides)

    logging.getLogger(__name__).debug(f"Loaded client configuration [{name_or_path}] "
                                      f"for [{config.get('service')}]")
    return construct_settings(config)
