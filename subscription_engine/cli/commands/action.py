"""
Action commands for the subscription engine.

Handles unsubscribe, bulk unsubscribe, retries and resubscribe.
"""

import click

from ...cli_session import get_cli_orchestrator
from ...exceptions import InvalidTransitionError, SubscriptionNotFoundError
from ..utils import echo_outcome, parse_subscription_ids


@click.command('unsubscribe')
@click.option('--user', 'user_id', required=True, help='Owner of the subscription')
@click.option('--id', 'subscription_id', type=int, required=True, help='Subscription ID to unsubscribe from')
@click.option('--dry-run', is_flag=True, help='Show what would happen without executing')
def unsubscribe(user_id, subscription_id, dry_run):
    """
    Execute unsubscribe for a subscription.

    Uses the best available method; a previously failed subscription is
    retried with the next method.

    Example:
        python main.py unsubscribe --user alice --id 5
        python main.py unsubscribe --user alice --id 5 --dry-run
    """
    orchestrator = get_cli_orchestrator()
    try:
        outcome = orchestrator.unsubscribe(user_id, subscription_id, dry_run=dry_run)
    except SubscriptionNotFoundError:
        click.secho(f"✗ Error: Subscription {subscription_id} not found", fg='red')
        raise click.Abort()
    except InvalidTransitionError as e:
        click.secho(f"✗ Error: cannot unsubscribe while status is {e.current}", fg='red')
        raise click.Abort()

    echo_outcome(outcome)
    if not outcome.success:
        raise click.Abort()


@click.command('bulk-unsubscribe')
@click.option('--user', 'user_id', required=True, help='Owner of the subscriptions')
@click.argument('ids')
@click.option('--dry-run', is_flag=True, help='Show what would happen without executing')
def bulk_unsubscribe(user_id, ids, dry_run):
    """
    Unsubscribe from several subscriptions at once.

    Supports multiple ID formats:
        - Single: 5
        - Multiple: 1,2,3
        - Range: 1-10
        - Mixed: 1,3-5,7

    Example:
        python main.py bulk-unsubscribe --user alice 1,3-5
    """
    try:
        id_list = parse_subscription_ids(ids)
    except ValueError as e:
        click.secho(f"✗ Error parsing IDs: {e}", fg='red')
        raise click.Abort()

    outcomes = get_cli_orchestrator().bulk_unsubscribe(user_id, id_list, dry_run=dry_run)
    for outcome in outcomes:
        echo_outcome(outcome)

    succeeded = sum(1 for o in outcomes if o.success)
    click.echo(f"\n{succeeded} of {len(outcomes)} succeeded")


@click.command('retry-failed')
@click.option('--user', 'user_id', required=True, help='Owner of the subscriptions')
@click.option('--dry-run', is_flag=True, help='Show what would happen without executing')
def retry_failed(user_id, dry_run):
    """
    Retry failed unsubscribes whose backoff window has passed.

    Example:
        python main.py retry-failed --user alice
    """
    outcomes = get_cli_orchestrator().retry_failed(user_id, dry_run=dry_run)
    if not outcomes:
        click.echo("No failed unsubscribes to retry")
        return
    for outcome in outcomes:
        echo_outcome(outcome)


@click.command('resubscribe')
@click.option('--user', 'user_id', required=True, help='Owner of the subscription')
@click.option('--id', 'subscription_id', type=int, required=True, help='Subscription ID')
def resubscribe(user_id, subscription_id):
    """
    Mark a subscription as not unsubscribed again.

    Nothing is sent to the sender.

    Example:
        python main.py resubscribe --user alice --id 5
    """
    try:
        record = get_cli_orchestrator().resubscribe(user_id, subscription_id)
    except SubscriptionNotFoundError:
        click.secho(f"✗ Error: Subscription {subscription_id} not found", fg='red')
        raise click.Abort()
    except InvalidTransitionError as e:
        click.secho(f"✗ Error: cannot resubscribe while status is {e.current}", fg='red')
        raise click.Abort()

    click.secho(f"✓ {record.sender_address} is back to {record.unsubscribe_status.value}", fg='green')
