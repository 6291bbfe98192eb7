"""
Unsubscribe method variants.

Each variant carries exactly the parameters its executor needs. Variants are
immutable and serialize to plain dicts for storage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union


class MethodKind(str, Enum):
    HEADER = 'header'
    LINK = 'link'
    MAILTO = 'mailto'
    FILTER = 'filter'
    UNKNOWN = 'unknown'


LINK_SOURCE_HEADER = 'list_unsubscribe'
LINK_SOURCE_BODY = 'body'


@dataclass(frozen=True)
class HeaderMethod:
    """RFC 8058 one-click: HTTP POST to the List-Unsubscribe https URL."""
    kind: ClassVar[MethodKind] = MethodKind.HEADER
    url: str

    @property
    def target(self) -> str:
        return self.url


@dataclass(frozen=True)
class LinkMethod:
    """HTTP GET of an unsubscribe URL from the header or the body."""
    kind: ClassVar[MethodKind] = MethodKind.LINK
    url: str
    source: str = LINK_SOURCE_HEADER

    @property
    def target(self) -> str:
        return self.url


@dataclass(frozen=True)
class MailtoMethod:
    kind: ClassVar[MethodKind] = MethodKind.MAILTO
    address: str
    subject: str = 'Unsubscribe'
    body: Optional[str] = None

    @property
    def target(self) -> str:
        return self.address


@dataclass(frozen=True)
class FilterMethod:
    """Provider-side filter archiving future mail from the sender."""
    kind: ClassVar[MethodKind] = MethodKind.FILTER
    sender_address: str
    action: str = 'archive'

    @property
    def criteria(self) -> str:
        return f"from:{self.sender_address}"

    @property
    def target(self) -> str:
        return self.criteria


@dataclass(frozen=True)
class UnknownMethod:
    kind: ClassVar[MethodKind] = MethodKind.UNKNOWN

    @property
    def target(self) -> Optional[str]:
        return None


UnsubscribeMethod = Union[HeaderMethod, LinkMethod, MailtoMethod, FilterMethod, UnknownMethod]


def method_to_dict(method: UnsubscribeMethod) -> Dict[str, Any]:
    if isinstance(method, HeaderMethod):
        return {'kind': method.kind.value, 'url': method.url}
    if isinstance(method, LinkMethod):
        return {'kind': method.kind.value, 'url': method.url, 'source': method.source}
    if isinstance(method, MailtoMethod):
        return {'kind': method.kind.value, 'address': method.address,
                'subject': method.subject, 'body': method.body}
    if isinstance(method, FilterMethod):
        return {'kind': method.kind.value, 'sender_address': method.sender_address,
                'action': method.action}
    return {'kind': MethodKind.UNKNOWN.value}


def method_from_dict(data: Optional[Mapping[str, Any]]) -> UnsubscribeMethod:
    """Rebuild a method from its dict form; anything unreadable is Unknown."""
    if not data:
        return UnknownMethod()
    kind = data.get('kind')
    try:
        if kind == MethodKind.HEADER.value:
            return HeaderMethod(url=data['url'])
        if kind == MethodKind.LINK.value:
            return LinkMethod(url=data['url'], source=data.get('source', LINK_SOURCE_HEADER))
        if kind == MethodKind.MAILTO.value:
            return MailtoMethod(address=data['address'], subject=data.get('subject') or 'Unsubscribe',
                                body=data.get('body'))
        if kind == MethodKind.FILTER.value:
            return FilterMethod(sender_address=data['sender_address'], action=data.get('action', 'archive'))
    except KeyError:
        pass
    return UnknownMethod()
