import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Union

logger = logging.getLogger(__name__)


@dataclass
class Prompt:
    """A question or notice waiting for the user's answer."""
    text: str
    kind: str  # "confirm" or "alert"
    future: asyncio.Future = field(repr=False)


class DialogChannel:
    """
    Request/response channel between the orchestrator and the presentation layer.

    The orchestrator awaits `ask()` or `alert()`; the presentation layer reads
    `pending`, shows it, and calls `respond()` with the user's choice.
    """

    def __init__(self):
        self._queue: Deque[Prompt] = deque()

    @property
    def pending(self) -> Optional[Prompt]:
        """The oldest unanswered prompt. Safe to read from the UI thread."""
        for prompt in list(self._queue):
            if not prompt.future.done():
                return prompt
        return None

    async def ask(self, question: str) -> bool:
        """Yes/no question; suspends until the user answers."""
        return bool(await self._open(question, "confirm"))

    async def alert(self, text: str) -> None:
        """Notice; suspends until the user acknowledges it."""
        await self._open(text, "alert")

    def respond(self, value: Union[bool, None] = True) -> bool:
        """Resolve the oldest pending prompt. Returns False if nothing was waiting."""
        prompt = self.pending
        if prompt is None:
            logger.debug("respond() called with no pending prompt")
            return False
        self._queue.remove(prompt)
        prompt.future.set_result(bool(value) if prompt.kind == "confirm" else None)
        return True

    async def _open(self, text: str, kind: str):
        prompt = Prompt(text=text, kind=kind, future=asyncio.get_running_loop().create_future())
        self._queue.append(prompt)
        logger.info(f"Waiting on user {kind}: {text!r}")
        try:
            return await prompt.future
        finally:
            if prompt in self._queue:
                self._queue.remove(prompt)
