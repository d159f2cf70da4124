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
CommandLineInterface
===================

Any files in the commands/ folder with the name cmd_*.py
will be attempted to be imported.
"""

import importlib
import logging
import os
import sys

import click

from gaxcore.settings import LOG_RECORD_FORMAT


CONTEXT_SETTINGS = dict(auto_envvar_prefix='GAX')


class Context:

    def __init__(self):
        self.verbose = False
        self.remote_url = None
        self.config = None
        self.channel_pool = None
        self.client = None


pass_context = click.make_pass_decorator(Context, ensure=True)
cmd_folder = os.path.abspath(os.path.join(os.path.dirname(__file__),
                                          'commands'))


class App(click.Group):

    def list_commands(self, context):
        """Lists available command names."""
        commands = []
        for filename in os.listdir(cmd_folder):
            if filename.endswith('.py') and filename.startswith('cmd_'):
                command_name = filename[4:-3].replace('_', '-')
                commands.append(command_name)
        commands.sort()

        return commands

    def get_command(self, context, name):
        """Looks-up and loads a particular command by name."""
        name = name.replace('-', '_')
        try:
            module = importlib.import_module(
                f'gaxcore._app.commands.cmd_{name}')

        except ImportError as e:
            if name in self.list_commands(context):
                click.echo(f"Error: {e}", err=True)
                sys.exit(1)
            return None

        return module.cli


def setup_logging(verbosity=0):
    """Deals with loggers verbosity"""
    asyncio_logger = logging.getLogger('asyncio')
    grpc_logger = logging.getLogger('grpc')
    root_logger = logging.getLogger()

    log_handler = logging.StreamHandler(stream=sys.stdout)
    for log_filter in root_logger.filters:
        log_handler.addFilter(log_filter)

    logging.basicConfig(format=LOG_RECORD_FORMAT, handlers=[log_handler])

    if verbosity == 1:
        root_logger.setLevel(logging.WARNING)
    elif verbosity == 2:
        root_logger.setLevel(logging.INFO)
    elif verbosity >= 3:
        root_logger.setLevel(logging.DEBUG)
    else:
        root_logger.setLevel(logging.ERROR)

    if verbosity >= 4:
        asyncio_logger.setLevel(logging.DEBUG)
        grpc_logger.setLevel(logging.DEBUG)
    else:
        asyncio_logger.setLevel(logging.CRITICAL)
        grpc_logger.setLevel(logging.WARNING)


@click.command(cls=App, context_settings=CONTEXT_SETTINGS)
@pass_context
def cli(context):
    """gaxcore's client command line interface."""
