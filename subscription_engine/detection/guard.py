"""
False-positive guard.

Runs after scoring and before persistence. Rules are evaluated in order and the
first match wins. The guard only vetoes or dampens; it never raises confidence.
"""

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from .scorer import POSSIBLE_THRESHOLD, ScoreResult, tier_for
from .types import NormalizedMessage, SenderAggregate, Tier

TWO_WAY_CAP = 0.2
PERSONALIZED_CAP = 0.1

RULE_SENT_BY_USER = 'sent_by_user'
RULE_TWO_WAY = 'two_way_conversation'
RULE_PERSONALIZED = 'personalization'
RULE_WHITELIST = 'whitelisted_domain'

_GREETING = r'^\W*(hi|hello|hey|dear|morning|good (morning|afternoon|evening))[\s,]+{name}\b'


@dataclass(frozen=True)
class UserProfile:
    """What the guard knows about the mailbox owner."""
    user_id: str
    first_name: Optional[str] = None
    whitelisted_domains: FrozenSet[str] = field(default_factory=frozenset)
    conversation_tokens: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, 'whitelisted_domains',
                           frozenset(d.strip().lower().lstrip('@') for d in self.whitelisted_domains if d))
        object.__setattr__(self, 'conversation_tokens',
                           frozenset(t.strip() for t in self.conversation_tokens if t and t.strip()))

    def with_domains(self, domains: Iterable[str]) -> 'UserProfile':
        return UserProfile(self.user_id, self.first_name, frozenset(domains), self.conversation_tokens)


@dataclass(frozen=True)
class GuardDecision:
    confidence: float
    tier: Tier
    is_active: bool
    vetoed: bool = False
    rule: Optional[str] = None

    @property
    def reason(self) -> str:
        return self.rule or 'passed'


def domain_is_whitelisted(sender_address: str, domains: FrozenSet[str]) -> bool:
    """Exact domain or any parent domain of the sender is whitelisted."""
    domain = sender_address.rpartition('@')[2].lower()
    while domain:
        if domain in domains:
            return True
        _, dot, domain = domain.partition('.')
        if not dot:
            break
    return False


def has_personalization_markers(message: NormalizedMessage, profile: UserProfile) -> bool:
    """Greeting with the user's first name plus a reference to an earlier conversation."""
    if not profile.first_name or not message.body_snippet:
        return False
    greeting = re.compile(_GREETING.format(name=re.escape(profile.first_name.strip())),
                          re.IGNORECASE | re.MULTILINE)
    if not greeting.search(message.body_snippet):
        return False

    if message.headers.in_reply_to() or message.headers.references():
        return True
    body = message.body_snippet.lower()
    return any(token.lower() in body for token in profile.conversation_tokens)


class FalsePositiveGuard:
    """Applies veto and dampening rules to a score."""

    def evaluate(self, message: NormalizedMessage, aggregate: SenderAggregate,
                 score: ScoreResult, profile: Optional[UserProfile] = None) -> GuardDecision:
        profile = profile or UserProfile(user_id=aggregate.user_id)
        confidence = score.confidence

        if message.is_sent_by_user:
            return GuardDecision(0.0, Tier.UNLIKELY, is_active=False, vetoed=True, rule=RULE_SENT_BY_USER)

        if aggregate.has_two_way_conversation:
            capped = min(confidence, TWO_WAY_CAP)
            return GuardDecision(capped, tier_for(capped), is_active=False, rule=RULE_TWO_WAY)

        if has_personalization_markers(message, profile):
            capped = min(confidence, PERSONALIZED_CAP)
            return GuardDecision(capped, tier_for(capped), is_active=False, rule=RULE_PERSONALIZED)

        if domain_is_whitelisted(aggregate.sender_address, profile.whitelisted_domains):
            return GuardDecision(confidence, score.tier, is_active=False, rule=RULE_WHITELIST)

        return GuardDecision(confidence, score.tier, is_active=confidence >= POSSIBLE_THRESHOLD)
