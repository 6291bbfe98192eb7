"""
User profile commands for the subscription engine.

The profile feeds the false-positive guard: first name and conversation
tokens for personalization checks, whitelisted domains that never count as
active subscriptions.
"""

import click

from ...cli_session import get_cli_orchestrator


@click.group('profile')
def profile():
    """Manage the user profile used for false-positive checks."""
    pass


@profile.command('set-name')
@click.option('--user', 'user_id', required=True, help='User ID')
@click.argument('first_name')
def set_name(user_id, first_name):
    """
    Set the user's first name.

    Example:
        python main.py profile set-name --user alice Alice
    """
    get_cli_orchestrator().update_profile(user_id, first_name=first_name)
    click.secho(f"✓ First name set to {first_name}", fg='green')


@profile.command('add-token')
@click.option('--user', 'user_id', required=True, help='User ID')
@click.argument('token')
def add_token(user_id, token):
    """
    Add a conversation token (e.g. a project or ticket name).

    Example:
        python main.py profile add-token --user alice "Project Falcon"
    """
    orchestrator = get_cli_orchestrator()
    current = orchestrator.get_profile(user_id)
    orchestrator.update_profile(user_id, conversation_tokens=current.conversation_tokens | {token})
    click.secho(f"✓ Added conversation token '{token}'", fg='green')


@profile.command('show')
@click.option('--user', 'user_id', required=True, help='User ID')
def show(user_id):
    """Show the stored profile."""
    current = get_cli_orchestrator().get_profile(user_id)
    click.echo(f"User: {current.user_id}")
    click.echo(f"First name: {current.first_name or '-'}")
    click.echo(f"Whitelisted domains: {', '.join(sorted(current.whitelisted_domains)) or '-'}")
    click.echo(f"Conversation tokens: {', '.join(sorted(current.conversation_tokens)) or '-'}")


@click.group('whitelist')
def whitelist():
    """Manage whitelisted sender domains."""
    pass


@whitelist.command('add')
@click.option('--user', 'user_id', required=True, help='User ID')
@click.argument('domain')
def add_domain(user_id, domain):
    """
    Whitelist a domain and its subdomains.

    Example:
        python main.py whitelist add --user alice mybank.com
    """
    _, changed = get_cli_orchestrator().whitelist_domain(user_id, domain)
    click.secho(f"✓ Whitelisted {domain} ({changed} subscription(s) deactivated)", fg='green')


@whitelist.command('remove')
@click.option('--user', 'user_id', required=True, help='User ID')
@click.argument('domain')
def remove_domain(user_id, domain):
    """Remove a whitelisted domain."""
    _, changed = get_cli_orchestrator().remove_whitelisted_domain(user_id, domain)
    click.secho(f"✓ Removed {domain} from whitelist ({changed} subscription(s) reactivated)", fg='green')


@whitelist.command('list')
@click.option('--user', 'user_id', required=True, help='User ID')
def list_domains(user_id):
    """List whitelisted domains."""
    domains = sorted(get_cli_orchestrator().get_profile(user_id).whitelisted_domains)
    if not domains:
        click.echo("No whitelisted domains")
        return
    for domain in domains:
        click.echo(f"  - {domain}")
