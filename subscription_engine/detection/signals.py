"""
Per-message signal extractors.

Every extractor is a pure function of one NormalizedMessage. Malformed headers,
URLs or HTML never raise: the extractor logs at DEBUG and returns the absent
value for its signal.
"""

import functools
import logging
import re
import urllib.parse
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, TypeVar

from bs4 import BeautifulSoup

from .signal_table import DEFAULT_SIGNAL_TABLE, SignalTable, SubjectPattern
from .types import NormalizedMessage, ProviderCategory

logger = logging.getLogger(__name__)

T = TypeVar('T')

HEADER_TARGET_PATTERN = re.compile(r'<([^>]+)>')
URL_PATTERN = re.compile(r'https?://[^\s<>"\']+', re.IGNORECASE)
BULK_PROVIDER_CATEGORIES = {ProviderCategory.PROMOTIONS, ProviderCategory.BULK}


def degrades_to(absent: T) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Return `absent` instead of raising when an extractor hits bad input."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(message: NormalizedMessage, *args, **kwargs) -> T:
            try:
                return func(message, *args, **kwargs)
            except Exception as e:
                logger.debug("Signal %s degraded to absent for message %s: %s",
                             func.__name__, getattr(message, 'id', '?'), e)
                return absent
        return wrapper
    return decorator


@dataclass(frozen=True)
class MailtoTarget:
    address: str
    subject: Optional[str] = None
    body: Optional[str] = None


@dataclass(frozen=True)
class ListUnsubscribeTargets:
    """Targets announced in a List-Unsubscribe header, in header order."""
    urls: Tuple[str, ...] = ()
    mailtos: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.urls and not self.mailtos

    @property
    def https_url(self) -> Optional[str]:
        return next((url for url in self.urls if url.lower().startswith('https://')), None)


def unwrap_quoted_printable(text: str) -> str:
    """Join quoted-printable soft line breaks so URLs split across lines survive."""
    text = re.sub(r'=\r?\n', '', text)
    return text.replace('=3D', '=')


def parse_mailto(target: str) -> Optional[MailtoTarget]:
    """Parse a mailto: URI into address, subject and body; None if unusable."""
    if not target or not target.lower().startswith('mailto:'):
        return None
    parsed = urllib.parse.urlparse(target)
    address = urllib.parse.unquote(parsed.path).strip()
    if '@' not in address or '.' not in address.rpartition('@')[2]:
        return None
    query = urllib.parse.parse_qs(parsed.query)
    subject = query.get('subject', [None])[0]
    body = query.get('body', [None])[0]
    return MailtoTarget(address=address, subject=subject, body=body)


@degrades_to(ListUnsubscribeTargets())
def list_unsubscribe_targets(message: NormalizedMessage) -> ListUnsubscribeTargets:
    """Parse `<url>, <mailto:...>` entries of the List-Unsubscribe header."""
    header = message.headers.list_unsubscribe()
    if not header:
        return ListUnsubscribeTargets()

    urls: List[str] = []
    mailtos: List[str] = []
    for raw in HEADER_TARGET_PATTERN.findall(header):
        target = raw.strip()
        lowered = target.lower()
        if lowered.startswith(('http://', 'https://')):
            parsed = urllib.parse.urlparse(target)
            if parsed.netloc and '.' in parsed.netloc:
                urls.append(target)
        elif lowered.startswith('mailto:') and parse_mailto(target):
            mailtos.append(target)
    return ListUnsubscribeTargets(
        urls=tuple(dict.fromkeys(urls)),
        mailtos=tuple(dict.fromkeys(mailtos))
    )


@degrades_to(False)
def has_one_click_header(message: NormalizedMessage) -> bool:
    """RFC 8058: List-Unsubscribe-Post present (key match, any case)."""
    return message.headers.list_unsubscribe_post() is not None


@degrades_to(False)
def has_list_unsubscribe_header(message: NormalizedMessage) -> bool:
    return not list_unsubscribe_targets(message).is_empty


@degrades_to(False)
def is_bulk_provider_category(message: NormalizedMessage) -> bool:
    return message.provider_category in BULK_PROVIDER_CATEGORIES


@degrades_to(False)
def is_no_reply_sender(message: NormalizedMessage, table: SignalTable = DEFAULT_SIGNAL_TABLE) -> bool:
    local_part, at, _ = message.sender_address.rpartition('@')
    if not at or not local_part:
        return False
    return bool(table.no_reply_pattern.search(local_part))


def _url_near_keyword(text: str, table: SignalTable) -> Optional[str]:
    window = table.keyword_url_window
    for match in URL_PATTERN.finditer(text):
        url = match.group(0).rstrip('.,;:)]')
        if table.body_keyword_pattern.search(url):
            return url
        surrounding = text[max(0, match.start() - window):match.end() + window]
        if table.body_keyword_pattern.search(surrounding):
            return url
    return None


def _anchor_with_keyword(html: str, table: SignalTable) -> Optional[str]:
    soup = BeautifulSoup(unwrap_quoted_printable(html), 'html.parser')
    for a_tag in soup.find_all('a', href=True):
        href = a_tag['href'].strip()
        if not href.lower().startswith(('http://', 'https://')):
            continue
        if table.body_keyword_pattern.search(href) or table.body_keyword_pattern.search(a_tag.get_text(' ')):
            return href
    return None


@degrades_to(None)
def body_unsubscribe_url(message: NormalizedMessage, table: SignalTable = DEFAULT_SIGNAL_TABLE) -> Optional[str]:
    """An http(s) URL in the body close to an unsubscribe keyword, if any."""
    if message.body_html:
        url = _anchor_with_keyword(message.body_html, table)
        if url:
            return url
    if message.body_snippet:
        return _url_near_keyword(unwrap_quoted_printable(message.body_snippet), table)
    return None


@degrades_to(None)
def bulk_subject_match(message: NormalizedMessage,
                       table: SignalTable = DEFAULT_SIGNAL_TABLE) -> Optional[SubjectPattern]:
    return table.match_subject(message.subject or '')


@dataclass(frozen=True)
class MessageSignals:
    """All per-message signals for one message."""
    one_click_header: bool
    list_unsubscribe: ListUnsubscribeTargets
    bulk_provider_category: bool
    no_reply_sender: bool
    body_unsubscribe_url: Optional[str]
    subject_match: Optional[SubjectPattern]

    @property
    def has_list_unsubscribe(self) -> bool:
        return not self.list_unsubscribe.is_empty


def extract_signals(message: NormalizedMessage, table: SignalTable = DEFAULT_SIGNAL_TABLE) -> MessageSignals:
    return MessageSignals(
        one_click_header=has_one_click_header(message),
        list_unsubscribe=list_unsubscribe_targets(message),
        bulk_provider_category=is_bulk_provider_category(message),
        no_reply_sender=is_no_reply_sender(message, table),
        body_unsubscribe_url=body_unsubscribe_url(message, table),
        subject_match=bulk_subject_match(message, table),
    )
