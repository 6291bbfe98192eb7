"""
Interfaces of the external collaborators the engine talks to.

Mail ingestion, outbound mail and provider filters live outside the engine;
these protocols describe the narrow surface the engine needs from them.
"""

from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from .detection.types import NormalizedMessage


class MessageSource(Protocol):
    """Delivers a user's messages in arrival order."""

    def iter_messages(self, user_id: str) -> Iterable[NormalizedMessage]:
        ...


class ThreadLookup(Protocol):
    """Looks up the other messages of a conversation thread."""

    def thread_messages(self, user_id: str, thread_id: str) -> Sequence[NormalizedMessage]:
        ...


class HttpClient(Protocol):
    """The part of requests.Session the unsubscribe executors use."""

    def get(self, url: str, **kwargs: Any) -> Any:
        ...

    def post(self, url: str, data: Optional[Mapping[str, str]] = None, **kwargs: Any) -> Any:
        ...


class MailSender(Protocol):
    """Sends the unsubscribe email for a mailto target."""

    def send(self, to_address: str, subject: str, body: str, timeout: float) -> None:
        ...


class FilterClient(Protocol):
    """Creates a provider-side mail filter. Returns a provider reference for the rule."""

    def create_filter(self, user_id: str, sender_address: str, criteria: str, action: str) -> str:
        ...
