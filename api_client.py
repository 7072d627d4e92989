import json
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from config import settings
from models import (
    AdminSyncReply,
    AudioClip,
    BookingReply,
    ChatReply,
    PendingBooking,
    TranscriptionReply,
)

# Set up a logger for the API client
logger = logging.getLogger(__name__)

ReplyT = TypeVar("ReplyT", bound=BaseModel)


class NetworkError(RuntimeError):
    """A remote call failed in transport or returned a body that could not be parsed."""

    def __init__(self, operation: str, detail: str, status_code: Optional[int] = None):
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.detail = detail
        self.status_code = status_code


class ClinicApiClient:
    """
    Typed client for the clinic assistant backend.
    Every call opens its own connection and is attempted exactly once.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def chat(self, message: str, history: List[Dict[str, str]]) -> ChatReply:
        """Sends one conversational turn along with the prior history."""
        logger.info(f"Sending chat turn with {len(history)} history entries.")
        return await self._post("chat", settings.chat_path, ChatReply,
                                json={"message": message, "history": history})

    async def transcribe(self, clip: AudioClip) -> TranscriptionReply:
        """Uploads a recorded clip as multipart field `audio`."""
        logger.info(f"Uploading {len(clip.data)} bytes of {clip.mime_type} for transcription.")
        files = {"audio": (clip.filename, clip.data, clip.mime_type)}
        return await self._post("transcribe", settings.transcribe_path, TranscriptionReply, files=files)

    async def book(self, booking: PendingBooking) -> BookingReply:
        """Asks the backend to book a confirmed proposal."""
        logger.info(f"Booking slot {booking.slot_id} at {booking.time}.")
        payload = {
            "slot_id": booking.slot_id,
            "time": booking.time,
            "patient_name": booking.patient_name,
            "phone_number": booking.phone_number,
        }
        return await self._post("book", settings.book_path, BookingReply, json=payload)

    async def sync_admin_data(self, payload: Any) -> AdminSyncReply:
        """Pushes an arbitrary JSON document to the admin update endpoint."""
        logger.info("Syncing admin data to the backend.")
        return await self._post("sync_admin_data", settings.admin_sync_path, AdminSyncReply, json=payload)

    async def _post(self, operation: str, path: str, reply_model: Type[ReplyT], **kwargs) -> ReplyT:
        try:
            async with self._client() as client:
                response = await client.post(path, **kwargs)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"{operation} returned HTTP {e.response.status_code}")
            raise NetworkError(operation, f"HTTP {e.response.status_code}", e.response.status_code) from e
        except httpx.RequestError as e:
            logger.warning(f"{operation} transport error: {e!r}")
            raise NetworkError(operation, f"transport error: {e!r}") from e
        except json.JSONDecodeError as e:
            logger.warning(f"{operation} returned a non-JSON body.")
            raise NetworkError(operation, "response was not valid JSON") from e

        try:
            return reply_model.model_validate(body)
        except ValidationError as e:
            logger.warning(f"{operation} returned an unexpected body: {e}")
            raise NetworkError(operation, "response did not match the expected shape") from e
