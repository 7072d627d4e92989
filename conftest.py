import asyncio
from typing import List, Optional

import pytest

from audio_capture import PermissionDenied
from models import AdminSyncReply, BookingReply, ChatReply, TranscriptionReply


class FakeClinicApi:
    """Stands in for ClinicApiClient; queue replies or exceptions per operation."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.chat_replies: list = []
        self.transcription = TranscriptionReply(status="success", text="hello doctor")
        self.booking = BookingReply(message="Your appointment is booked.")
        self.admin = AdminSyncReply(message="Synced 3 clinics.")
        self.chat_gate: Optional[asyncio.Event] = None
        self.book_gate: Optional[asyncio.Event] = None

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def chat(self, message, history):
        self.calls.append(("chat", message, history))
        if self.chat_gate is not None:
            await self.chat_gate.wait()
        reply = self.chat_replies.pop(0) if self.chat_replies else ChatReply(message="How can I help?")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def transcribe(self, clip):
        self.calls.append(("transcribe", clip))
        if isinstance(self.transcription, Exception):
            raise self.transcription
        return self.transcription

    async def book(self, booking):
        self.calls.append(("book", booking))
        if self.book_gate is not None:
            await self.book_gate.wait()
        if isinstance(self.booking, Exception):
            raise self.booking
        return self.booking

    async def sync_admin_data(self, payload):
        self.calls.append(("sync_admin_data", payload))
        if isinstance(self.admin, Exception):
            raise self.admin
        return self.admin


class FakeDialogs:
    def __init__(self, answer: bool = True):
        self.answer = answer
        self.questions: List[str] = []
        self.alerts: List[str] = []

    async def ask(self, question):
        self.questions.append(question)
        return self.answer

    async def alert(self, text):
        self.alerts.append(text)


class FakeStream:
    def __init__(self, fragments=(), supported=("audio/webm",), stop_gate: Optional[asyncio.Event] = None,
                 support_error: Optional[BaseException] = None):
        self.fragments = list(fragments)
        self.supported = supported
        self.stop_gate = stop_gate
        self.support_error = support_error
        self.started_with = None
        self.stopped = False
        self.released = False
        self._on_data = None

    def is_type_supported(self, mime_type):
        if self.support_error is not None:
            raise self.support_error
        return mime_type in self.supported

    async def start(self, mime_type, timeslice_ms, on_data):
        self.started_with = (mime_type, timeslice_ms)
        self._on_data = on_data

    async def stop(self):
        if self.stop_gate is not None:
            await self.stop_gate.wait()
        for fragment in self.fragments:
            self._on_data(fragment)
        self.stopped = True

    def release(self):
        self.released = True


class FakeMicrophone:
    def __init__(self, stream: Optional[FakeStream] = None, error: Optional[BaseException] = None):
        self.stream = stream or FakeStream(fragments=[b"RIFF", b"data"])
        self.error = error
        self.opens = 0

    async def open(self):
        self.opens += 1
        if self.error is not None:
            raise self.error
        return self.stream


@pytest.fixture
def fake_api():
    return FakeClinicApi()


@pytest.fixture
def fake_dialogs():
    return FakeDialogs()


@pytest.fixture
def fake_microphone():
    return FakeMicrophone()


@pytest.fixture
def denied_microphone():
    return FakeMicrophone(error=PermissionDenied("user refused"))


@pytest.fixture
def make_stream():
    return FakeStream


@pytest.fixture
def make_microphone():
    return FakeMicrophone


@pytest.fixture
def declining_dialogs():
    return FakeDialogs(answer=False)
