import time
import logging
from typing import Callable, List, Optional

from models import Message, Sender

logger = logging.getLogger(__name__)

MessagePredicate = Callable[[Message], bool]
MessageMutation = Callable[[Message], Message]


class MessageIdGenerator:
    """Issues millisecond-timestamp ids that never repeat, even within one turn."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def next_id(self) -> int:
        candidate = int(self._clock() * 1000)
        self._last = max(candidate, self._last + 1)
        return self._last


class MessageStore:
    """
    Ordered log of conversation entries, always seeded with one bot greeting.
    Entries are only ever appended or replaced in place; none is ever removed.
    """

    def __init__(self, greeting: str, ids: Optional[MessageIdGenerator] = None):
        self._greeting = greeting
        self._ids = ids or MessageIdGenerator()
        self._messages: List[Message] = []
        self.reset()

    @property
    def messages(self) -> List[Message]:
        """A snapshot of the conversation, safe for the presentation layer to iterate."""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def new_message(self, sender: Sender, text: str, **fields) -> Message:
        return Message(id=self._ids.next_id(), sender=sender, text=text, **fields)

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        logger.debug(f"Appended {message.sender.value} message {message.id}")
        return message

    def find(self, message_id: int) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def patch_last(self, predicate: MessagePredicate, mutation: MessageMutation) -> Optional[Message]:
        """Replace the most recent entry matching `predicate` with `mutation(entry)`."""
        for index in range(len(self._messages) - 1, -1, -1):
            if predicate(self._messages[index]):
                return self._replace(index, mutation)
        logger.debug("patch_last found no matching message")
        return None

    def patch_by_id(self, message_id: int, mutation: MessageMutation) -> Optional[Message]:
        """Replace the entry with `message_id` by `mutation(entry)`; None if it is gone."""
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return self._replace(index, mutation)
        logger.debug(f"patch_by_id found no message {message_id}")
        return None

    def reset(self) -> None:
        self._messages = [self.new_message(Sender.BOT, self._greeting)]
        logger.info("Conversation reset to the initial greeting.")

    def history(self) -> List[dict]:
        """The conversation without the seed greeting, reduced to sender and text."""
        return [message.as_history_entry() for message in self._messages[1:]]

    def _replace(self, index: int, mutation: MessageMutation) -> Message:
        original = self._messages[index]
        patched = mutation(original)
        if patched.id != original.id:
            raise ValueError("A patch must not change the message id.")
        self._messages[index] = patched
        return patched
