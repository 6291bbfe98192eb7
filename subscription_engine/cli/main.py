"""
Main CLI group for the subscription engine.

Integrates all command groups into a single CLI application.
"""

import click

from .. import __version__
from ..config import Config, load_config_from_env_file
from ..logging import configure_engine_logging
from .commands.action import bulk_unsubscribe, resubscribe, retry_failed, unsubscribe
from .commands.admin import init
from .commands.detect import detect
from .commands.profile import profile, whitelist
from .commands.subscription import list_filters, list_subscriptions


@click.group()
@click.version_option(version=__version__, prog_name='Subscription Engine')
@click.option('--log-format', type=click.Choice(['json', 'text']), default='text',
              help='Format of engine log lines')
def cli(log_format):
    """
    Subscription Engine - Detect subscriptions and manage unsubscribes.

    Classifies recurring bulk senders from normalized messages, scores them
    with conservative false-positive checks, and runs unsubscribe actions
    with retry and failure tracking.
    """
    load_config_from_env_file()
    configure_engine_logging(level=Config.LOG_LEVEL, format=log_format)


# Register command groups
cli.add_command(profile, name='profile')
cli.add_command(whitelist, name='whitelist')

# Register standalone commands
cli.add_command(init, name='init')
cli.add_command(detect, name='detect')
cli.add_command(list_subscriptions, name='list-subscriptions')
cli.add_command(list_filters, name='list-filters')
cli.add_command(unsubscribe, name='unsubscribe')
cli.add_command(bulk_unsubscribe, name='bulk-unsubscribe')
cli.add_command(retry_failed, name='retry-failed')
cli.add_command(resubscribe, name='resubscribe')


if __name__ == '__main__':
    cli()
