"""
Tests for the per-method unsubscribe executors.
"""

import smtplib
from unittest.mock import Mock, patch

import pytest
import requests

from subscription_engine.unsubscribe.methods import FilterMethod, HeaderMethod, LinkMethod, MailtoMethod
from subscription_engine.unsubscribe_executor import (
    ActionRequest, EmailReplyExecutor, FilterExecutor, HttpGetExecutor, HttpPostExecutor,
    SmtpMailSender, StoredFilterClient,
)
from subscription_engine.unsubscribe_executor.http_post_executor import ONE_CLICK_FORM

REQUEST = ActionRequest(user_id='alice', sender_address='news@shop.example', subscription_id=1)
LINK = LinkMethod(url='https://shop.example/unsubscribe?id=1')
HEADER = HeaderMethod(url='https://shop.example/one-click?id=1')


class TestHttpGetExecutor:
    """GET of List-Unsubscribe and body URLs."""

    def test_successful_get(self):
        executor = HttpGetExecutor(timeout=5)
        with patch('requests.get') as mock_get:
            mock_get.return_value = Mock(status_code=200, text='You are unsubscribed')

            result = executor.execute(LINK, REQUEST)

        assert result.success is True
        assert result.status_code == 200
        mock_get.assert_called_once()
        args, kwargs = mock_get.call_args
        assert args[0] == LINK.url
        assert kwargs['timeout'] == 5
        assert kwargs['allow_redirects'] is True
        assert 'User-Agent' in kwargs['headers']

    def test_redirected_success(self):
        client = Mock()
        client.get.return_value = Mock(status_code=204, text='')

        result = HttpGetExecutor(http_client=client).execute(LINK, REQUEST)

        assert result.success is True

    def test_non_2xx_fails(self):
        client = Mock()
        client.get.return_value = Mock(status_code=404, text='Not Found')

        result = HttpGetExecutor(http_client=client).execute(LINK, REQUEST)

        assert result.success is False
        assert result.status_code == 404
        assert '404' in result.error_message

    def test_timeout(self):
        client = Mock()
        client.get.side_effect = requests.exceptions.Timeout()

        result = HttpGetExecutor(http_client=client, timeout=3).execute(LINK, REQUEST)

        assert result.success is False
        assert 'timed out' in result.error_message.lower()

    def test_connection_error(self):
        client = Mock()
        client.get.side_effect = requests.exceptions.ConnectionError('refused')

        result = HttpGetExecutor(http_client=client).execute(LINK, REQUEST)

        assert result.success is False
        assert 'connection' in result.error_message.lower()

    def test_dry_run_makes_no_request(self):
        client = Mock()

        result = HttpGetExecutor(http_client=client, dry_run=True).execute(LINK, REQUEST)

        assert result.success is True
        assert result.dry_run is True
        assert 'DRY RUN' in result.message
        client.get.assert_not_called()

    def test_method_mismatch(self):
        client = Mock()

        result = HttpGetExecutor(http_client=client).execute(HEADER, REQUEST)

        assert result.success is False
        assert 'mismatch' in result.error_message.lower()
        client.get.assert_not_called()

    def test_unexpected_error_becomes_failure(self):
        client = Mock()
        client.get.side_effect = RuntimeError('boom')

        result = HttpGetExecutor(http_client=client).execute(LINK, REQUEST)

        assert result.success is False
        assert 'Unexpected error' in result.error_message

    def test_rate_limit_sleeps_between_requests(self):
        client = Mock()
        client.get.return_value = Mock(status_code=200, text='')
        executor = HttpGetExecutor(http_client=client, rate_limit_delay=2.0)

        with patch('subscription_engine.unsubscribe_executor.base_executor.time.sleep') as mock_sleep:
            executor.execute(LINK, REQUEST)
            executor.execute(LINK, REQUEST)

        mock_sleep.assert_called_once()
        assert 0 < mock_sleep.call_args[0][0] <= 2.0


class TestHttpPostExecutor:
    """RFC 8058 one-click POST."""

    def test_one_click_post(self):
        executor = HttpPostExecutor(timeout=7)
        with patch('requests.post') as mock_post:
            mock_post.return_value = Mock(status_code=200, text='')

            result = executor.execute(HEADER, REQUEST)

        assert result.success is True
        args, kwargs = mock_post.call_args
        assert args[0] == HEADER.url
        assert kwargs['data'] == ONE_CLICK_FORM == {'List-Unsubscribe': 'One-Click'}
        assert kwargs['timeout'] == 7
        assert kwargs['allow_redirects'] is False

    def test_server_error(self):
        client = Mock()
        client.post.return_value = Mock(status_code=500, text='Internal error')

        result = HttpPostExecutor(http_client=client).execute(HEADER, REQUEST)

        assert result.success is False
        assert result.status_code == 500


class TestEmailReplyExecutor:
    """Mailto unsubscribe through a MailSender."""

    def test_sends_email(self):
        sender = Mock()
        method = MailtoMethod(address='leave@shop.example', subject='unsubscribe 42')

        result = EmailReplyExecutor(mail_sender=sender, timeout=4).execute(method, REQUEST)

        assert result.success is True
        assert 'leave@shop.example' in result.message
        sender.send.assert_called_once()
        kwargs = sender.send.call_args.kwargs
        assert kwargs['to_address'] == 'leave@shop.example'
        assert kwargs['subject'] == 'unsubscribe 42'
        assert kwargs['timeout'] == 4

    def test_no_sender_configured(self):
        result = EmailReplyExecutor().execute(MailtoMethod(address='leave@shop.example'), REQUEST)

        assert result.success is False
        assert 'No mail sender' in result.error_message

    def test_smtp_authentication_error(self):
        sender = Mock()
        sender.send.side_effect = smtplib.SMTPAuthenticationError(535, b'bad credentials')

        result = EmailReplyExecutor(mail_sender=sender).execute(MailtoMethod(address='leave@shop.example'), REQUEST)

        assert result.success is False
        assert 'authentication' in result.error_message.lower()

    def test_timeout(self):
        sender = Mock()
        sender.send.side_effect = TimeoutError('timed out')

        result = EmailReplyExecutor(mail_sender=sender).execute(MailtoMethod(address='leave@shop.example'), REQUEST)

        assert result.success is False
        assert 'timeout' in result.error_message.lower()

    def test_malformed_address(self):
        sender = Mock()

        result = EmailReplyExecutor(mail_sender=sender).execute(MailtoMethod(address='nobody'), REQUEST)

        assert result.success is False
        sender.send.assert_not_called()


class TestSmtpMailSender:

    def test_missing_credentials(self):
        sender = SmtpMailSender(None, None)
        assert sender.has_credentials is False
        with pytest.raises(smtplib.SMTPAuthenticationError):
            sender.send('leave@shop.example', 'Unsubscribe', 'bye', timeout=1)

    def test_send_uses_starttls_and_login(self):
        sender = SmtpMailSender('me@mail.example', 'app-password', 'smtp.mail.example', 2525)
        with patch('smtplib.SMTP') as mock_smtp:
            server = mock_smtp.return_value.__enter__.return_value

            sender.send('leave@shop.example', 'Unsubscribe', 'bye', timeout=3)

        mock_smtp.assert_called_once_with('smtp.mail.example', 2525, timeout=3)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('me@mail.example', 'app-password')
        sent = server.send_message.call_args[0][0]
        assert sent['To'] == 'leave@shop.example'
        assert sent['Subject'] == 'Unsubscribe'


class TestFilterExecutor:
    """Filter fallback."""

    def test_creates_filter_through_client(self):
        client = Mock()
        client.create_filter.return_value = 'filter-9'
        method = FilterMethod(sender_address='news@shop.example')

        result = FilterExecutor(filter_client=client).execute(method, REQUEST)

        assert result.success is True
        assert 'filter-9' in result.message
        client.create_filter.assert_called_once_with('alice', 'news@shop.example', 'from:news@shop.example', 'archive')

    def test_stored_filter_client_reuses_rule(self, store):
        client = StoredFilterClient(store)

        first = client.create_filter('alice', 'news@shop.example', 'from:news@shop.example', 'archive')
        second = client.create_filter('alice', 'news@shop.example', 'from:news@shop.example', 'archive')

        assert first == second
        with store.unit_of_work() as uow:
            rules = uow.list_filter_rules('alice')
            assert len(rules) == 1
            assert rules[0].criteria == 'from:news@shop.example'

    def test_no_client(self):
        result = FilterExecutor().execute(FilterMethod(sender_address='news@shop.example'), REQUEST)
        assert result.success is False
