"""
Tests for unsubscribe method resolution and target safety validation.
"""

from subscription_engine.detection.types import SenderAggregate
from subscription_engine.unsubscribe.methods import (
    LINK_SOURCE_BODY, LINK_SOURCE_HEADER, FilterMethod, HeaderMethod, LinkMethod, MailtoMethod,
    MethodKind, UnknownMethod, method_from_dict, method_to_dict,
)
from subscription_engine.unsubscribe.resolver import UnsubscribeResolver
from subscription_engine.unsubscribe.validators import UnsubscribeSafetyValidator

from conftest import USER


def _aggregate(**targets):
    return SenderAggregate(user_id=USER, sender_address='news@shop.example', **targets)


class TestResolverPriority:
    """Resolution order: header, header link, mailto, body link, filter."""

    def setup_method(self):
        self.resolver = UnsubscribeResolver()

    def test_one_click_beats_everything(self):
        aggregate = _aggregate(saw_one_click_header=True, one_click_url='https://shop.example/oc',
                               list_unsubscribe_url='https://shop.example/oc',
                               body_unsubscribe_url='https://shop.example/body')

        assert self.resolver.resolve(aggregate) == HeaderMethod(url='https://shop.example/oc')

    def test_header_link_before_mailto_and_body(self):
        aggregate = _aggregate(list_unsubscribe_url='https://shop.example/u',
                               list_unsubscribe_mailto='mailto:leave@shop.example',
                               body_unsubscribe_url='https://shop.example/body')

        method = self.resolver.resolve(aggregate)
        assert method == LinkMethod(url='https://shop.example/u', source=LINK_SOURCE_HEADER)

    def test_mailto_before_body_link(self):
        aggregate = _aggregate(list_unsubscribe_mailto='mailto:leave@shop.example?subject=stop',
                               body_unsubscribe_url='https://shop.example/body')

        assert self.resolver.resolve(aggregate) == MailtoMethod(address='leave@shop.example', subject='stop')

    def test_body_link(self):
        method = self.resolver.resolve(_aggregate(body_unsubscribe_url='https://shop.example/body'))
        assert method == LinkMethod(url='https://shop.example/body', source=LINK_SOURCE_BODY)

    def test_filter_when_nothing_else(self):
        assert self.resolver.resolve(_aggregate()) == FilterMethod(sender_address='news@shop.example')

    def test_candidate_order(self):
        aggregate = _aggregate(saw_one_click_header=True, one_click_url='https://shop.example/oc',
                               list_unsubscribe_url='https://shop.example/oc',
                               list_unsubscribe_mailto='mailto:leave@shop.example',
                               body_unsubscribe_url='https://shop.example/body')

        kinds = [m.kind for m in self.resolver.candidates(aggregate)]
        assert kinds == [MethodKind.HEADER, MethodKind.LINK, MethodKind.MAILTO, MethodKind.LINK, MethodKind.FILTER]

    def test_body_link_equal_to_header_link_is_not_repeated(self):
        aggregate = _aggregate(list_unsubscribe_url='https://shop.example/u',
                               body_unsubscribe_url='https://shop.example/u')

        assert len(self.resolver.candidates(aggregate)) == 2


class TestResolverExclusion:

    def test_failed_methods_are_skipped(self):
        resolver = UnsubscribeResolver()
        aggregate = _aggregate(list_unsubscribe_url='https://shop.example/u',
                               list_unsubscribe_mailto='mailto:leave@shop.example')
        link = LinkMethod(url='https://shop.example/u')

        assert resolver.resolve(aggregate, exclude=[link]) == MailtoMethod(address='leave@shop.example')

    def test_everything_excluded_is_unknown(self):
        resolver = UnsubscribeResolver()
        aggregate = _aggregate()

        assert resolver.resolve(aggregate, exclude=resolver.candidates(aggregate)) == UnknownMethod()

    def test_unsafe_targets_are_skipped(self):
        resolver = UnsubscribeResolver()
        aggregate = _aggregate(list_unsubscribe_url='https://bit.ly/abc',
                               body_unsubscribe_url='https://shop.example/u.exe')

        assert resolver.resolve(aggregate) == FilterMethod(sender_address='news@shop.example')

    def test_plain_http_links_are_used(self):
        resolver = UnsubscribeResolver()
        aggregate = _aggregate(list_unsubscribe_url='http://shop.example/u',
                               body_unsubscribe_url='http://shop.example/body')

        assert resolver.candidates(aggregate)[:2] == [
            LinkMethod(url='http://shop.example/u', source=LINK_SOURCE_HEADER),
            LinkMethod(url='http://shop.example/body', source=LINK_SOURCE_BODY),
        ]

    def test_plain_http_links_rejected_when_https_only(self):
        resolver = UnsubscribeResolver(https_only_links=True)
        aggregate = _aggregate(list_unsubscribe_url='http://shop.example/u')

        assert resolver.resolve(aggregate) == FilterMethod(sender_address='news@shop.example')

    def test_one_click_over_http_falls_back_to_get(self):
        resolver = UnsubscribeResolver(UnsubscribeSafetyValidator(require_https=False))
        aggregate = _aggregate(saw_one_click_header=True, one_click_url='http://shop.example/oc',
                               list_unsubscribe_url='http://shop.example/oc')

        assert resolver.resolve(aggregate) == LinkMethod(url='http://shop.example/oc')


class TestSafetyValidator:

    def setup_method(self):
        self.validator = UnsubscribeSafetyValidator()

    def test_safe_url(self):
        result = self.validator.validate('https://shop.example/unsubscribe?id=42')
        assert result.is_safe
        assert result.summary == "Target is safe to use"

    def test_http_is_flagged(self):
        result = self.validator.validate('http://shop.example/unsubscribe')
        assert not result.is_safe
        assert any('HTTPS' in w for w in result.warnings)

    def test_http_allowed_per_target(self):
        assert self.validator.is_safe('https://shop.example/u')
        assert self.validator.validate('http://shop.example/u', require_https=False).is_safe
        assert not UnsubscribeSafetyValidator(require_https=False).validate(
            'http://shop.example/u', require_https=True).is_safe

    def test_executable_download(self):
        assert not self.validator.is_safe('https://shop.example/unsubscribe.exe')

    def test_shortener(self):
        assert not self.validator.is_safe('https://tinyurl.com/xyz')

    def test_suspicious_parameter(self):
        result = self.validator.validate('https://shop.example/u?cmd=rm')
        assert not result.is_safe
        assert 'Suspicious parameters detected' in result.summary

    def test_malformed(self):
        assert not self.validator.is_safe('https://')
        assert not self.validator.is_safe('')
        assert not self.validator.is_safe('ftp://shop.example/u')

    def test_mailto(self):
        assert self.validator.is_safe('mailto:leave@shop.example')
        assert not self.validator.is_safe('mailto:nobody')


class TestMethodSerialization:

    def test_each_variant_survives_storage_form(self):
        for method in (HeaderMethod('https://a.example/x'), LinkMethod('https://a.example/y', LINK_SOURCE_BODY),
                       MailtoMethod('x@a.example', 'Stop', 'bye'), FilterMethod('x@a.example'), UnknownMethod()):
            assert method_from_dict(method_to_dict(method)) == method

    def test_unreadable_data_is_unknown(self):
        assert method_from_dict(None) == UnknownMethod()
        assert method_from_dict({'kind': 'link'}) == UnknownMethod()
        assert method_from_dict({'kind': 'carrier-pigeon'}) == UnknownMethod()
