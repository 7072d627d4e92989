import logging
from enum import Enum
from typing import Callable, Dict, Optional

from api_client import ClinicApiClient, NetworkError
from message_store import MessageStore
from models import Message, PendingBooking, PlainKind, Sender

logger = logging.getLogger(__name__)

CONFIRMED_SUFFIX = " ✅ (Confirmed)"
CANCELLED_TEXT = "❌ Booking Cancelled."
CANCEL_FOLLOW_UP = "No problem! Let me know if you want to look at other times."
BOOKING_FAILED_TEXT = "Booking failed."
BOOKING_SENT_TEXT = "Your booking request was sent."


class BookingState(str, Enum):
    OFFERED = "offered"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingConfirmation:
    """
    Tracks each proposed appointment from Offered to Confirmed or Cancelled.

    Resolution is optimistic: the proposal is cleared from its message before
    the booking call is made, and is not restored if that call fails.

    Outcomes are kept for every proposal in the current conversation so they
    can be reported by `state_of`; there is at most one entry per message and
    `clear()` drops them all when the conversation is reset.
    """

    def __init__(self, store: MessageStore, client: ClinicApiClient):
        self.store = store
        self.client = client
        self._states: Dict[int, BookingState] = {}

    def offer(self, message: Message) -> None:
        if message.booking_details is None:
            return
        self._states[message.id] = BookingState.OFFERED
        logger.info(f"Booking offered on message {message.id} for slot {message.booking_details.slot_id}.")

    def state_of(self, message_id: int) -> Optional[BookingState]:
        return self._states.get(message_id)

    def clear(self) -> None:
        self._states.clear()

    async def confirm(self, booking_details: Optional[PendingBooking], message_id: int) -> bool:
        """Confirm the proposal on `message_id`. Returns False if it was already resolved or is unknown."""
        proposal = self._resolve(message_id, BookingState.CONFIRMED, lambda text: text + CONFIRMED_SUFFIX)
        if proposal is None:
            return False

        try:
            reply = await self.client.book(booking_details or proposal)
        except NetworkError as e:
            logger.warning(f"Booking for message {message_id} failed: {e}")
            self._append_bot(BOOKING_FAILED_TEXT)
        else:
            self._append_bot(reply.message or BOOKING_SENT_TEXT)
        return True

    def cancel(self, message_id: int) -> bool:
        """Cancel the proposal on `message_id` without contacting the server."""
        if self._resolve(message_id, BookingState.CANCELLED, lambda _text: CANCELLED_TEXT) is None:
            return False
        self._append_bot(CANCEL_FOLLOW_UP)
        return True

    def _resolve(self, message_id: int, outcome: BookingState,
                 rewrite: Callable[[str], str]) -> Optional[PendingBooking]:
        message = self.store.find(message_id)
        if message is None or message.booking_details is None:
            logger.debug(f"No pending booking on message {message_id}; ignoring {outcome.value}.")
            return None

        proposal = message.booking_details
        self.store.patch_by_id(
            message_id,
            lambda m: m.model_copy(update={"kind": PlainKind(), "text": rewrite(m.text)}),
        )
        self._states[message_id] = outcome
        logger.info(f"Booking on message {message_id} {outcome.value}.")
        return proposal

    def _append_bot(self, text: str) -> None:
        self.store.append(self.store.new_message(Sender.BOT, text))
