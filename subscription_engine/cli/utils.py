"""
Common utilities for CLI commands.

Shared helper functions used across multiple command modules.
"""

from typing import List

import click

from ..detection.types import SubscriptionRecord
from ..unsubscribe_executor import UnsubscribeOutcome


def parse_subscription_ids(id_string: str) -> List[int]:
    """
    Parse subscription IDs from various formats.

    Supports:
        - Single ID: "5"
        - Comma-separated: "1,2,3"
        - Ranges: "1-5"
        - Mixed: "1,3-5,7"

    Returns:
        List of integer IDs, in the given order

    Raises:
        ValueError: On an empty part, a non-numeric part or a descending range
    """
    ids = []
    for part in id_string.split(','):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty ID in '{id_string}'")
        if '-' in part:
            start, end = (int(x) for x in part.split('-', 1))
            if end < start:
                raise ValueError(f"Descending range '{part}'")
            ids.extend(range(start, end + 1))
        else:
            ids.append(int(part))
    return ids


def echo_record(record: SubscriptionRecord) -> None:
    """Print one subscription record."""
    markers = []
    if not record.is_active:
        markers.append("INACTIVE")
    if record.is_unsubscribed:
        markers.append("UNSUBSCRIBED")
    if record.emails_after_unsubscribe:
        markers.append(f"VIOLATIONS: {record.emails_after_unsubscribe}")
    status = f" [{', '.join(markers)}]" if markers else ""

    click.echo(f"\n  ID: {record.id}{status}")
    click.echo(f"  From: {record.sender_name} <{record.sender_address}>" if record.sender_name
               else f"  From: {record.sender_address}")
    click.echo(f"  Confidence: {record.confidence_score:.2f} ({record.tier.value})")
    click.echo(f"  Category: {record.category.value}  Frequency: {record.frequency_class.value}")
    click.echo(f"  Emails: {record.email_count}")
    method = record.unsubscribe_method
    target = f" {method.target}" if method.target else ""
    click.echo(f"  Method: {method.kind.value}{target}")
    click.echo(f"  Unsubscribe status: {record.unsubscribe_status.value}")
    if record.unsubscribe_reason:
        click.echo(f"  Last error: {record.unsubscribe_reason}")


def echo_outcome(outcome: UnsubscribeOutcome) -> None:
    """Print one unsubscribe outcome as a single line."""
    who = outcome.sender_address or f"subscription {outcome.subscription_id}"
    if outcome.deferred:
        click.secho(f"… {outcome.subscription_id}: {who} - {outcome.message}", fg='yellow')
    elif outcome.dry_run and outcome.success:
        click.echo(f"[DRY RUN] {outcome.subscription_id}: {who} - {outcome.message}")
    elif outcome.success:
        click.secho(f"✓ {outcome.subscription_id}: unsubscribed from {who} via {outcome.method_kind}", fg='green')
    else:
        reason = outcome.error_message or outcome.message
        click.secho(f"✗ {outcome.subscription_id}: {who} - {reason}", fg='red')
