"""
Shared fixtures: in-memory database, store and message factories.
"""

from datetime import datetime, timedelta

import pytest

from subscription_engine.database import DatabaseManager, SubscriptionStore
from subscription_engine.detection.types import HeaderMap, NormalizedMessage

BASE_TIME = datetime(2024, 3, 4, 9, 0, 0)
USER = 'alice'


def _make_message(message_id, sender='newsletter@shop.example', received_at=BASE_TIME, subject='',
                  headers=None, body_snippet='', sent_by_user=False, thread_id=None,
                  provider_category=None, recipients=(), display_name='', body_html=None):
    return NormalizedMessage(
        id=message_id,
        sender_address=sender,
        received_at=received_at,
        sender_display_name=display_name,
        subject=subject,
        body_snippet=body_snippet,
        headers=HeaderMap(headers or {}),
        is_sent_by_user=sent_by_user,
        thread_id=thread_id,
        provider_category=provider_category,
        recipient_addresses=tuple(recipients),
        body_html=body_html,
    )


def _weekly_newsletter(count=5, sender='newsletter@shop.example',
                       url='https://shop.example/unsubscribe?u=42', one_click=False, start=BASE_TIME):
    headers = {'List-Unsubscribe': f'<{url}>'}
    if one_click:
        headers['List-Unsubscribe-Post'] = 'List-Unsubscribe=One-Click'
    return [
        _make_message(f'{sender}-{start + timedelta(weeks=i):%Y%m%d}', sender=sender,
                      received_at=start + timedelta(weeks=i),
                      subject=f'Shop Weekly Newsletter #{i + 1}', headers=headers,
                      display_name='Shop Example')
        for i in range(count)
    ]


@pytest.fixture
def make_message():
    """Factory for NormalizedMessage with test defaults."""
    return _make_message


@pytest.fixture
def weekly_newsletter():
    """Factory for a run of weekly newsletter messages with a List-Unsubscribe URL."""
    return _weekly_newsletter


@pytest.fixture
def db_manager():
    """Create in-memory test database."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.initialize_database()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def store(db_manager):
    return SubscriptionStore(db_manager)
