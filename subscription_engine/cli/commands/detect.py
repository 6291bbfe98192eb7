"""
Detection commands for the subscription engine.

Runs a full detection scan over a JSON Lines export of a user's messages.
"""

import click

from ...cli_session import get_cli_orchestrator
from ...sources import JsonlMessageSource


@click.command('detect')
@click.option('--user', 'user_id', required=True, help='User to detect subscriptions for')
@click.option('--messages', 'messages_path', required=True,
              type=click.Path(exists=True, dir_okay=False), help='JSON Lines file of normalized messages')
def detect(user_id, messages_path):
    """
    Detect subscriptions from a user's messages.

    Each line of the messages file is one normalized message object.

    Example:
        python main.py detect --user alice --messages inbox.jsonl
    """
    orchestrator = get_cli_orchestrator()
    source = JsonlMessageSource(messages_path)

    click.echo(f"\nDetecting subscriptions for {user_id}...")
    try:
        summary = orchestrator.detect(user_id, source)
    except Exception as e:
        click.secho(f"✗ Detection failed: {e}", fg='red')
        raise click.Abort()

    click.secho(f"✓ Detection complete: {summary.messages_seen} messages processed", fg='green')
    click.echo(f"  New subscriptions: {summary.new_count}")
    click.echo(f"  Updated subscriptions: {summary.updated_count}")
    click.echo(f"  Skipped: {summary.skipped_count + summary.vetoed_count}")
    if summary.duplicate_count:
        click.echo(f"  Duplicates ignored: {summary.duplicate_count}")
    if summary.violation_count:
        click.secho(f"  Mail after unsubscribe: {summary.violation_count}", fg='yellow')
    if summary.deferred_count:
        click.secho(f"  Deferred after storage errors: {summary.deferred_count}", fg='yellow')
    if source.skipped_lines:
        click.secho(f"  Malformed lines skipped: {source.skipped_lines}", fg='yellow')
