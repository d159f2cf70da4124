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
Settings command
=================

Inspect client configurations.
"""

import sys

import click

from gaxcore._exceptions import InvalidArgumentError
from gaxcore.client.retry import BackoffPolicy
from gaxcore.client.service_settings import bundled_configs, load_service_settings

from ..cli import pass_context, setup_logging


@click.group(name='settings', short_help="Inspect client configurations.")
@pass_context
def cli(context):
    pass


@cli.command('list', short_help="List bundled client configurations.")
@pass_context
def list_configs(context):
    for name in bundled_configs():
        click.echo(name)


@cli.command('show', short_help="Show the effective retry settings of a service.")
@click.argument('SERVICE-OR-PATH', type=click.STRING)
@click.option('-v', '--verbose', count=True,
              help='Increase log verbosity level.')
@pass_context
def show(context, service_or_path, verbose):
    """Prints per-method retry settings of a bundled configuration, by name,
    or of a client configuration file."""
    setup_logging(verbosity=verbose)

    try:
        settings = load_service_settings(service_or_path)
    except InvalidArgumentError as e:
        click.echo(click.style(
            f"ERROR: Config ({service_or_path}) failed validation: {e}",
            fg="red", bold=True
        ), err=True)
        sys.exit(-1)

    click.echo(f"Service: {settings.service_name}")
    if settings.endpoint is not None:
        click.echo(f"Endpoint: {settings.endpoint}")
    for scope in settings.scopes:
        click.echo(f"Scope: {scope}")

    for method_name, call_settings in settings:
        retry = call_settings.retry
        click.echo(f"\n{method_name}:")
        if retry is None:
            click.echo("  no retry")
            continue

        codes = ', '.join(sorted(code.name for code in getattr(retry.retry_filter, 'codes', ())))
        click.echo(f"  retry codes: {codes or 'none'}")
        click.echo(f"  retry backoff: {_format_backoff(retry.retry_backoff)}")
        click.echo(f"  timeout backoff: {_format_backoff(retry.timeout_backoff)}")
        if retry.total_expiration.timeout is not None:
            click.echo(f"  total timeout: {_millis(retry.total_expiration.timeout)}ms")


def _format_backoff(backoff: BackoffPolicy) -> str:
    return (f"{_millis(backoff.delay)}ms to {_millis(backoff.max_delay)}ms, "
            f"x{backoff.multiplier}")


def _millis(value) -> int:
    return int(round(value.total_seconds() * 1000))
