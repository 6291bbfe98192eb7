"""
Message sources for the engine.

JsonlMessageSource streams NormalizedMessage records from a JSON Lines file,
one message object per line. InMemoryMessageSource serves a fixed list and
doubles as a ThreadLookup.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Union

from .detection.types import NormalizedMessage

logger = logging.getLogger(__name__)


class JsonlMessageSource:
    """Stream messages from a JSON Lines file. Malformed lines are skipped."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.skipped_lines = 0

    def iter_messages(self, user_id: str) -> Iterator[NormalizedMessage]:
        with self.path.open('r', encoding='utf-8') as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    if data.get('user_id', user_id) != user_id:
                        continue
                    yield NormalizedMessage.from_dict(data)
                except (ValueError, TypeError, AttributeError, KeyError) as e:
                    self.skipped_lines += 1
                    logger.warning("Skipping malformed message on line %d of %s: %s",
                                   line_number, self.path, e)


class InMemoryMessageSource:
    """Fixed message list, served in order; also answers thread lookups."""

    def __init__(self, messages: Iterable[NormalizedMessage] = ()):
        self.messages: List[NormalizedMessage] = list(messages)

    def add(self, message: NormalizedMessage) -> None:
        self.messages.append(message)

    def iter_messages(self, user_id: str) -> Iterator[NormalizedMessage]:
        return iter(list(self.messages))

    def thread_messages(self, user_id: str, thread_id: str) -> Sequence[NormalizedMessage]:
        return [m for m in self.messages if m.thread_id == thread_id]
