"""
Subscription listing commands for the subscription engine.
"""

import click

from ...cli_session import get_cli_orchestrator
from ...database import ListFilters
from ...detection.types import SubscriptionCategory, Tier, UnsubscribeStatus
from ..utils import echo_record


@click.command('list-subscriptions')
@click.option('--user', 'user_id', required=True, help='User to list subscriptions for')
@click.option('--status', type=click.Choice([s.value for s in UnsubscribeStatus]),
              help='Filter by unsubscribe status')
@click.option('--category', type=click.Choice([c.value for c in SubscriptionCategory]),
              help='Filter by category')
@click.option('--tier', type=click.Choice([t.value for t in Tier]), help='Filter by confidence tier')
@click.option('--active/--inactive', 'is_active', default=None, help='Filter by active flag')
@click.option('--min-confidence', type=click.FloatRange(0.0, 1.0), help='Minimum confidence score')
@click.option('--violations', is_flag=True, help='Only subscriptions that kept sending after unsubscribe')
def list_subscriptions(user_id, status, category, tier, is_active, min_confidence, violations):
    """
    List subscriptions for a user.

    Example:
        python main.py list-subscriptions --user alice
        python main.py list-subscriptions --user alice --status failed
        python main.py list-subscriptions --user alice --active --min-confidence 0.8
    """
    orchestrator = get_cli_orchestrator()
    filters = ListFilters(
        status=UnsubscribeStatus(status) if status else None,
        category=SubscriptionCategory(category) if category else None,
        is_active=is_active,
        min_confidence=min_confidence,
        tier=Tier(tier) if tier else None,
    )
    records = orchestrator.list_subscriptions(user_id, filters)
    if violations:
        records = [r for r in records if r.emails_after_unsubscribe > 0]

    if not records:
        click.echo("\nNo subscriptions found")
        return

    click.echo(f"\nSubscriptions for {user_id}: {len(records)}")
    click.echo("=" * 80)
    for record in records:
        echo_record(record)
    click.echo("\n" + "=" * 80)


@click.command('list-filters')
@click.option('--user', 'user_id', required=True, help='User to list filter rules for')
def list_filters(user_id):
    """
    List provider filter rules queued by the filter fallback.

    Example:
        python main.py list-filters --user alice
    """
    rules = get_cli_orchestrator().list_filter_rules(user_id)
    if not rules:
        click.echo("\nNo filter rules queued")
        return

    click.echo(f"\nFilter rules for {user_id}: {len(rules)}")
    for rule in rules:
        click.echo(f"  [{rule['id']}] {rule['action']} {rule['criteria']} ({rule['sender']})")
