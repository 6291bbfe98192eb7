"""
Unsubscribe method resolution.

Picks the best available method for a sender from the targets accumulated on
its aggregate, in fixed priority order:

1. One-click header (RFC 8058 POST)
2. List-Unsubscribe URL (GET)
3. List-Unsubscribe mailto
4. Unsubscribe URL found in a message body (GET)
5. Provider filter (always available)

One-click targets must be https. GET links may be plain http unless the
resolver is built with `https_only_links`.
"""

from typing import Iterable, List, Optional

from ..detection.signals import parse_mailto
from ..detection.types import SenderAggregate
from ..logging import EngineLogger
from .methods import (
    LINK_SOURCE_BODY, LINK_SOURCE_HEADER, FilterMethod, HeaderMethod, LinkMethod,
    MailtoMethod, UnknownMethod, UnsubscribeMethod,
)
from .validators import UnsubscribeSafetyValidator


class UnsubscribeResolver:
    """Resolve the unsubscribe method for a sender aggregate."""

    def __init__(self, validator: Optional[UnsubscribeSafetyValidator] = None,
                 https_only_links: bool = False):
        self.validator = validator or UnsubscribeSafetyValidator()
        self.https_only_links = https_only_links
        self.logger = EngineLogger("resolver")

    def candidates(self, aggregate: SenderAggregate) -> List[UnsubscribeMethod]:
        """All usable methods for the sender, highest priority first.

        The filter fallback is always last.
        """
        methods: List[UnsubscribeMethod] = []

        if aggregate.saw_one_click_header and aggregate.one_click_url:
            if self._safe(aggregate, aggregate.one_click_url, require_https=True):
                methods.append(HeaderMethod(url=aggregate.one_click_url))

        if aggregate.list_unsubscribe_url and self._safe(aggregate, aggregate.list_unsubscribe_url,
                                                         self.https_only_links):
            methods.append(LinkMethod(url=aggregate.list_unsubscribe_url, source=LINK_SOURCE_HEADER))

        if aggregate.list_unsubscribe_mailto and self._safe(aggregate, aggregate.list_unsubscribe_mailto):
            mailto = parse_mailto(aggregate.list_unsubscribe_mailto)
            methods.append(MailtoMethod(
                address=mailto.address,
                subject=mailto.subject or 'Unsubscribe',
                body=mailto.body
            ))

        if aggregate.body_unsubscribe_url and self._safe(aggregate, aggregate.body_unsubscribe_url,
                                                         self.https_only_links):
            body_link = LinkMethod(url=aggregate.body_unsubscribe_url, source=LINK_SOURCE_BODY)
            # Same URL as the header link adds nothing
            if not any(isinstance(m, LinkMethod) and m.url == body_link.url for m in methods):
                methods.append(body_link)

        methods.append(FilterMethod(sender_address=aggregate.sender_address))
        return methods

    def resolve(self, aggregate: SenderAggregate,
                exclude: Iterable[UnsubscribeMethod] = ()) -> UnsubscribeMethod:
        """
        First available method not in `exclude`.

        Args:
            aggregate: Sender aggregate carrying the latest targets seen
            exclude: Methods that already failed for this subscription

        Returns:
            The chosen method; Unknown when every candidate was excluded
        """
        excluded = set(exclude)
        for method in self.candidates(aggregate):
            if method not in excluded:
                return method

        self.logger.warning("No unsubscribe method left after exclusions", {
            'sender': aggregate.sender_address,
            'excluded': [m.kind.value for m in excluded]
        })
        return UnknownMethod()

    def _safe(self, aggregate: SenderAggregate, target: str,
              require_https: Optional[bool] = None) -> bool:
        result = self.validator.validate(target, require_https)
        if not result.is_safe:
            self.logger.info("Skipping unsafe unsubscribe target", {
                'sender': aggregate.sender_address,
                'target': target,
                'warnings': result.warnings
            })
        return result.is_safe
