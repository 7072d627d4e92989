from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Sender(str, Enum):
    """Who authored a conversation entry."""
    USER = "user"
    BOT = "bot"


class Slot(BaseModel):
    """A candidate appointment time offered by the assistant."""
    model_config = {"frozen": True}

    start_time: str = Field(..., description="Display start time of the slot, e.g. '10:00'.")
    day: str = Field(default="", description="Day the slot falls on, e.g. 'Monday'.")
    slot_id: Optional[Union[str, int]] = Field(None, description="Server-side identifier of the slot.")


class PendingBooking(BaseModel):
    """An appointment proposed by the assistant and awaiting user confirmation."""
    model_config = {"frozen": True}

    slot_id: Optional[Union[str, int]] = Field(None, description="Server-side identifier of the proposed slot.")
    time: str = Field(default="", description="Proposed appointment time.")
    day: str = Field(default="", description="Proposed appointment day.")
    clinic_name: str = Field(default="", description="Name of the clinic hosting the appointment.")
    patient_name: str = Field(default="", description="Name of the patient the booking is for.")
    phone_number: str = Field(default="", description="Contact number of the patient.")


# --- Message kinds ---
# A bot message is exactly one of: plain text, a slot offer, or a pending confirmation.

class PlainKind(BaseModel):
    model_config = {"frozen": True}
    type: Literal["plain"] = "plain"


class SlotOffer(BaseModel):
    model_config = {"frozen": True}
    type: Literal["slot_offer"] = "slot_offer"
    slots: List[Slot] = Field(..., min_length=1)


class PendingConfirmation(BaseModel):
    model_config = {"frozen": True}
    type: Literal["pending_confirmation"] = "pending_confirmation"
    booking: PendingBooking


MessageKind = Union[PlainKind, SlotOffer, PendingConfirmation]


class Message(BaseModel):
    """A single entry in the conversation.

    Messages are frozen; the store replaces an entry with an edited copy when
    a voice placeholder is filled in or a pending booking is resolved.
    """
    model_config = {"frozen": True}

    id: int = Field(..., description="Unique, monotonically increasing identifier.")
    sender: Sender = Field(..., description="The author of the message.")
    text: str = Field(..., description="Display text; may contain **bold** markup.")
    kind: MessageKind = Field(default_factory=PlainKind, discriminator="type")

    @property
    def slots(self) -> List[Slot]:
        return list(self.kind.slots) if isinstance(self.kind, SlotOffer) else []

    @property
    def booking_details(self) -> Optional[PendingBooking]:
        return self.kind.booking if isinstance(self.kind, PendingConfirmation) else None

    def as_history_entry(self) -> dict:
        """Reduce to the shape the chat endpoint expects in `history`."""
        return {"sender": self.sender.value, "text": self.text}


class AudioClip(BaseModel):
    """A finished microphone recording ready for transcription."""
    data: bytes
    mime_type: str
    filename: str


# --- Wire replies ---

class ChatReply(BaseModel):
    """Response of the chat endpoint."""
    status: str = Field(default="ok", description="'ok' or 'requires_confirmation'.")
    message: str = Field(..., description="Assistant reply text.")
    slots: Optional[List[Slot]] = Field(default=None)
    booking_details: Optional[PendingBooking] = Field(default=None)

    @property
    def requires_confirmation(self) -> bool:
        return self.status == "requires_confirmation"

    def to_kind(self) -> MessageKind:
        """Fold the reply into the message variant it should render as."""
        if self.requires_confirmation and self.booking_details is not None:
            return PendingConfirmation(booking=self.booking_details)
        if not self.requires_confirmation and self.slots:
            return SlotOffer(slots=self.slots)
        return PlainKind()


class TranscriptionReply(BaseModel):
    """Response of the transcription endpoint."""
    status: str = Field(default="")
    text: str = Field(default="")

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class BookingReply(BaseModel):
    """Response of the booking endpoint; the outcome is conveyed only by `message`."""
    message: str = Field(default="")


class AdminSyncReply(BaseModel):
    """Response of the admin data sync endpoint."""
    message: str = Field(default="")
