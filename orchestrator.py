import json
import logging
from typing import Any, List, Optional

from api_client import ClinicApiClient, NetworkError
from audio_capture import AudioCapturePipeline, CaptureState, Microphone, PermissionDenied
from booking import BookingConfirmation
from config import settings
from dialogs import DialogChannel
from message_store import MessageStore
from models import AudioClip, Message, PendingBooking, Sender, Slot

logger = logging.getLogger(__name__)

VOICE_PLACEHOLDER = "🎤 Processing voice..."
VOICE_UNREADABLE = "🎤 (voice message could not be transcribed)"
TRANSCRIPTION_FAILED_TEXT = "Sorry, I couldn't understand that recording. Please try again or type your message."
CONNECTION_ERROR_TEXT = "Connection error."
MICROPHONE_REQUIRED_TEXT = "Microphone access is required."
INVALID_JSON_TEXT = "Invalid JSON format."
ADMIN_SYNC_DONE_TEXT = "Database Updated!"
ADMIN_SYNC_FAILED_TEXT = "Could not reach the server. The database was not updated."
RESET_QUESTION = "Start a new conversation?"


class MalformedInput(ValueError):
    """Admin data that is not a valid JSON document."""


def parse_admin_payload(raw_text: str) -> Any:
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise MalformedInput(f"Invalid JSON at line {e.lineno}, column {e.colno}: {e.msg}") from e


def format_admin_payload(raw_text: str) -> str:
    """Validate an uploaded admin file and pretty-print it for editing."""
    return json.dumps(parse_admin_payload(raw_text), indent=2, ensure_ascii=False)


def quick_book_text(slot: Slot) -> str:
    return f"I want to book the {slot.start_time} slot on {slot.day}."


def _is_voice_placeholder(message: Message) -> bool:
    return message.sender is Sender.USER and message.text == VOICE_PLACEHOLDER


class ConversationOrchestrator:
    """
    Drives the conversation one turn at a time.

    A turn appends the user's message, marks the orchestrator busy, calls the
    assistant and appends exactly one bot reply. Booking confirm and cancel are
    not gated by the busy flag. Every failure ends as a bot message, a notice
    through `dialogs`, or a logged no-op.
    """

    def __init__(self, client: Optional[ClinicApiClient] = None,
                 dialogs: Optional[DialogChannel] = None,
                 microphone: Optional[Microphone] = None,
                 greeting: Optional[str] = None,
                 audio_mime: Optional[str] = None):
        self.client = client or ClinicApiClient()
        self.dialogs = dialogs or DialogChannel()
        self.store = MessageStore(greeting or settings.greeting)
        self.bookings = BookingConfirmation(self.store, self.client)
        self.audio = None
        if microphone is not None:
            self.audio = AudioCapturePipeline(microphone, on_clip=self.handle_voice_clip,
                                              primary_mime=audio_mime)
        self.is_busy = False

    # --- Rendering surface ---

    @property
    def messages(self) -> List[Message]:
        return self.store.messages

    @property
    def is_recording(self) -> bool:
        return self.audio is not None and self.audio.is_recording

    @property
    def is_capturing(self) -> bool:
        """True from the start of a recording until its clip has been handed off."""
        return self.audio is not None and self.audio.state is not CaptureState.IDLE

    @property
    def can_send(self) -> bool:
        return not self.is_busy and not self.is_capturing

    # --- Typed input ---

    async def submit_text(self, text: str) -> bool:
        """Start a turn with typed input. Returns False when the input was not accepted."""
        text = text.strip()
        if not text:
            return False
        if not self.can_send:
            logger.debug("submit_text ignored while a turn or recording is in progress")
            return False
        await self._run_turn(text)
        return True

    async def select_slot(self, slot: Slot) -> bool:
        """Quick-book: send a natural-language request for `slot` as the user."""
        return await self.submit_text(quick_book_text(slot))

    async def _run_turn(self, text: str) -> None:
        history = self.store.history()
        self.store.append(self.store.new_message(Sender.USER, text))
        self.is_busy = True
        try:
            await self._send_to_chat(text, history)
        finally:
            self.is_busy = False

    async def _send_to_chat(self, text: str, history: List[dict]) -> None:
        try:
            reply = await self.client.chat(text, history)
        except NetworkError as e:
            logger.warning(f"Chat turn failed: {e}")
            self._append_bot(CONNECTION_ERROR_TEXT)
            return

        message = self.store.append(self.store.new_message(Sender.BOT, reply.message, kind=reply.to_kind()))
        self.bookings.offer(message)
        logger.info(f"Chat turn completed with status '{reply.status}' ({message.kind.type}).")

    # --- Voice input ---

    async def toggle_recording(self) -> bool:
        """Start recording when idle, stop it when recording. Returns the new recording flag."""
        if self.is_recording:
            await self.stop_recording()
        else:
            await self.start_recording()
        return self.is_recording

    async def start_recording(self) -> bool:
        if self.audio is None:
            logger.warning("No microphone configured.")
            await self.dialogs.alert(MICROPHONE_REQUIRED_TEXT)
            return False
        if self.is_busy:
            logger.debug("start_recording ignored while a turn is in progress")
            return False
        try:
            return await self.audio.start()
        except PermissionDenied as e:
            logger.warning(f"Microphone unavailable: {e}")
            await self.dialogs.alert(MICROPHONE_REQUIRED_TEXT)
            return False

    async def stop_recording(self) -> Optional[AudioClip]:
        if self.audio is None:
            return None
        return await self.audio.stop()

    async def handle_voice_clip(self, clip: AudioClip) -> None:
        """Transcribe a finished recording and send the text as a chat turn."""
        history = self.store.history()
        self.store.append(self.store.new_message(Sender.USER, VOICE_PLACEHOLDER))
        self.is_busy = True
        try:
            try:
                reply = await self.client.transcribe(clip)
            except NetworkError as e:
                logger.warning(f"Transcription failed: {e}")
                reply = None

            if reply is None or not reply.succeeded or not reply.text.strip():
                if reply is not None:
                    logger.warning(f"Transcription returned status '{reply.status}' with no usable text.")
                self.store.patch_last(_is_voice_placeholder,
                                      lambda m: m.model_copy(update={"text": VOICE_UNREADABLE}))
                self._append_bot(TRANSCRIPTION_FAILED_TEXT)
                return

            transcript = reply.text.strip()
            self.store.patch_last(_is_voice_placeholder,
                                  lambda m: m.model_copy(update={"text": f'🎤 "{transcript}"'}))
            await self._send_to_chat(transcript, history)
        finally:
            self.is_busy = False

    # --- Bookings ---

    async def confirm_booking(self, message_id: int, booking_details: Optional[PendingBooking] = None) -> bool:
        return await self.bookings.confirm(booking_details, message_id)

    def cancel_booking(self, message_id: int) -> bool:
        return self.bookings.cancel(message_id)

    # --- Conversation ---

    async def reset_conversation(self, ask: bool = True) -> bool:
        """Replace the conversation with the greeting, after asking the user when `ask` is set."""
        if ask and not await self.dialogs.ask(RESET_QUESTION):
            logger.info("Reset declined by the user.")
            return False
        self.store.reset()
        self.bookings.clear()
        return True

    # --- Admin ---

    async def sync_admin_data(self, raw_text: str) -> bool:
        """Validate and push admin JSON. Never touches the conversation."""
        if not raw_text.strip():
            return False
        try:
            payload = parse_admin_payload(raw_text)
        except MalformedInput as e:
            logger.warning(f"Admin data rejected: {e}")
            await self.dialogs.alert(INVALID_JSON_TEXT)
            return False

        try:
            reply = await self.client.sync_admin_data(payload)
        except NetworkError as e:
            logger.warning(f"Admin sync failed: {e}")
            await self.dialogs.alert(ADMIN_SYNC_FAILED_TEXT)
            return False

        await self.dialogs.alert(reply.message or ADMIN_SYNC_DONE_TEXT)
        return True

    def _append_bot(self, text: str) -> None:
        self.store.append(self.store.new_message(Sender.BOT, text))
