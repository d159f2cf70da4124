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
Operations command
=================

Query and manage long-running operations.
"""

import functools
import itertools
import sys

import click
from google.protobuf import text_format

from gaxcore._exceptions import GaxError
from gaxcore.client.channel_pool import ChannelPool, create_channel, endpoint_from_url
from gaxcore.client.operations import OperationsClient
from gaxcore.client.service_settings import load_service_settings
from gaxcore.settings import DEFAULT_CLI_MAX_RESULTS

from ..cli import pass_context, setup_logging


@click.group(name='operations', short_help="Query and manage long-running operations.")
@click.option('--remote', type=click.STRING, default='grpc://localhost:50051', show_default=True,
              help="Remote operations server's URL (port defaults to 50051 if no specified).")
@click.option('--config', type=click.Path(file_okay=True, dir_okay=False, exists=True),
              help="Client configuration to use instead of the bundled one.")
@click.option('-v', '--verbose', count=True,
              help='Increase log verbosity level.')
@pass_context
def cli(context, remote, config, verbose):
    setup_logging(verbosity=verbose)

    try:
        endpoint, secure = endpoint_from_url(remote)
        settings = load_service_settings(config or OperationsClient.DEFAULT_CONFIG)
    except GaxError as e:
        click.echo(click.style(f"ERROR: {e}", fg="red", bold=True), err=True)
        sys.exit(-1)

    context.remote_url = remote
    context.channel_pool = ChannelPool(channel_factory=functools.partial(create_channel, secure=secure))
    click.get_current_context().call_on_close(context.channel_pool.shutdown_all)

    context.client = OperationsClient.create(endpoint, settings=settings,
                                             channel_pool=context.channel_pool)

    click.echo(f"Starting operations client for {remote}...", err=True)


@cli.command('list', short_help="List operations.")
@click.argument('NAME', type=click.STRING)
@click.option('--filter', 'filter_', type=click.STRING, default='',
              help="Server-side filter expression.")
@click.option('--page-size', type=click.IntRange(min=0), default=None,
              help="Number of operations fetched per request.")
@click.option('--max-results', type=click.IntRange(min=0), default=DEFAULT_CLI_MAX_RESULTS,
              show_default=True, help="Stop after this many operations (0 for no limit).")
@pass_context
def list_operations(context, name, filter_, page_size, max_results):
    try:
        operations = context.client.list_operations(name, filter_=filter_, page_size=page_size)
        if max_results:
            operations = itertools.islice(operations, max_results)

        count = 0
        for operation in operations:
            _print_operation_status(operation)
            count += 1
    except GaxError as e:
        _fail(e)

    if not count:
        click.echo("No operations found.")


@cli.command('get', short_help="Show an operation.")
@click.argument('NAME', type=click.STRING)
@pass_context
def get_operation(context, name):
    try:
        operation = context.client.get_operation(name)
    except GaxError as e:
        _fail(e)

    click.echo(text_format.MessageToString(operation), nl=False)


@cli.command('cancel', short_help="Cancel an operation.")
@click.argument('NAME', type=click.STRING)
@pass_context
def cancel_operation(context, name):
    try:
        context.client.cancel_operation(name)
    except GaxError as e:
        _fail(e)

    click.echo(f"Cancellation requested for [{name}]")


@cli.command('delete', short_help="Delete an operation.")
@click.argument('NAME', type=click.STRING)
@pass_context
def delete_operation(context, name):
    try:
        context.client.delete_operation(name)
    except GaxError as e:
        _fail(e)

    click.echo(f"Deleted [{name}]")


def _print_operation_status(operation):
    state = 'done' if operation.done else 'running'
    if operation.done and operation.HasField('error'):
        state = f'failed ({operation.error.code}: {operation.error.message})'
    click.echo(f"{operation.name}: {state}")


def _fail(error):
    click.echo(click.style(f"ERROR: {error}", fg="red", bold=True), err=True)
    sys.exit(-1)
