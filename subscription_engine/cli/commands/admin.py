"""
Admin commands for the subscription engine.

Handles database initialization.
"""

import click

from ...config import Config
from ...database import init_database


@click.command('init')
def init():
    """
    Initialize the database.

    Creates the database schema and required tables.

    Example:
        python main.py init
    """
    try:
        db_manager = init_database(Config.get_database_path())
        click.secho("✓ Database initialized successfully", fg='green')
        click.echo(f"Database location: {db_manager.database_url}")
    except Exception as e:
        click.secho(f"✗ Error initializing database: {e}", fg='red')
        raise click.Abort()
