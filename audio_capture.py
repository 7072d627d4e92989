import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol

from config import settings
from models import AudioClip

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[bytes], None]
ClipHandler = Callable[[AudioClip], Awaitable[None]]


class PermissionDenied(RuntimeError):
    """Microphone access was refused or no input device is available."""


# --------- Protocols ---------
class AudioStream(Protocol):
    def is_type_supported(self, mime_type: str) -> bool: ...
    """
    Whether the device can encode audio in `mime_type`.
    """
    async def start(self, mime_type: str, timeslice_ms: int, on_data: ChunkCallback) -> None: ...
    """
    Begin recording. `on_data` receives an encoded fragment every `timeslice_ms`.
    """
    async def stop(self) -> None: ...
    """
    Stop recording. Any final fragment is delivered to `on_data` before this returns.
    """
    def release(self) -> None: ...
    """
    Give the underlying input device back. Must be safe to call after a failed stop.
    """


class Microphone(Protocol):
    async def open(self) -> AudioStream: ...
    """
    Acquire the input device. Raises PermissionDenied when access is refused.
    """


# --------- Recording ---------
class CaptureState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"


def filename_for(mime_type: str) -> str:
    """'audio/webm;codecs=opus' -> 'voice.webm'."""
    subtype = mime_type.split("/", 1)[-1].split(";", 1)[0].strip()
    return f"voice.{subtype or 'ogg'}"


@dataclass
class RecordingSession:
    mime_type: str
    stream: AudioStream
    chunks: List[bytes] = field(default_factory=list)

    def add_chunk(self, data: bytes) -> None:
        if data:
            self.chunks.append(data)

    def to_clip(self) -> AudioClip:
        return AudioClip(data=b"".join(self.chunks), mime_type=self.mime_type,
                         filename=filename_for(self.mime_type))


class AudioCapturePipeline:
    """
    Owns the microphone for at most one recording at a time.

    Idle -> Recording -> Finalizing -> Idle. The device is released on every
    exit path of `stop()`, before the finished clip is handed to `on_clip`.
    """

    def __init__(self, microphone: Microphone, on_clip: ClipHandler,
                 flush_interval_ms: Optional[int] = None,
                 primary_mime: Optional[str] = None,
                 fallback_mime: Optional[str] = None):
        self.microphone = microphone
        self._on_clip = on_clip
        self.flush_interval_ms = flush_interval_ms or settings.audio_flush_interval_ms
        self.primary_mime = primary_mime or settings.audio_primary_mime
        self.fallback_mime = fallback_mime or settings.audio_fallback_mime
        self._state = CaptureState.IDLE
        self._session: Optional[RecordingSession] = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is CaptureState.RECORDING

    async def start(self) -> bool:
        """Start recording. Returns False when a session is already active."""
        if self._state is not CaptureState.IDLE:
            logger.debug(f"start() ignored while {self._state.value}")
            return False

        self._state = CaptureState.RECORDING
        stream = None
        try:
            try:
                stream = await self.microphone.open()
            except OSError as e:
                raise PermissionDenied(f"No usable microphone: {e}") from e

            mime_type = self.primary_mime if stream.is_type_supported(self.primary_mime) else self.fallback_mime
            session = RecordingSession(mime_type=mime_type, stream=stream)
            await stream.start(mime_type, self.flush_interval_ms, session.add_chunk)
        except BaseException:
            if stream is not None:
                stream.release()
            self._state = CaptureState.IDLE
            raise

        self._session = session
        logger.info(f"Recording started as {mime_type}.")
        return True

    async def stop(self) -> Optional[AudioClip]:
        """Stop recording and forward the clip. Returns the clip, or None if nothing was captured."""
        session = self._session
        if self._state is not CaptureState.RECORDING or session is None:
            logger.debug("stop() ignored, no active recording")
            return None

        self._session = None
        self._state = CaptureState.FINALIZING
        try:
            try:
                await session.stream.stop()
            finally:
                session.stream.release()

            if not session.chunks:
                logger.info("Recording stopped with no audio captured; discarding.")
                return None

            clip = session.to_clip()
            logger.info(f"Recording finished: {len(session.chunks)} fragments, {len(clip.data)} bytes.")
            await self._on_clip(clip)
            return clip
        finally:
            self._state = CaptureState.IDLE


# --------- Adapters ---------
class BufferedAudioStream:
    """Replays an already-encoded recording as fragments of roughly `chunk_size` bytes."""

    def __init__(self, data: bytes, mime_type: str, chunk_size: int = 16384):
        self._data = data
        self._mime_type = mime_type
        self._chunk_size = chunk_size
        self._on_data: Optional[ChunkCallback] = None
        self.released = False

    def is_type_supported(self, mime_type: str) -> bool:
        return mime_type.split(";", 1)[0] == self._mime_type

    async def start(self, mime_type: str, timeslice_ms: int, on_data: ChunkCallback) -> None:
        self._on_data = on_data

    async def stop(self) -> None:
        if self._on_data is None:
            return
        for offset in range(0, len(self._data), self._chunk_size):
            self._on_data(self._data[offset:offset + self._chunk_size])
        self._on_data = None

    def release(self) -> None:
        self.released = True


class BufferedMicrophone:
    """
    A microphone whose recording was captured elsewhere, e.g. by the browser
    widget in the Streamlit front-end. A missing buffer means access was refused.
    """

    def __init__(self, data: Optional[bytes], mime_type: str):
        self.data = data
        self.mime_type = mime_type

    async def open(self) -> BufferedAudioStream:
        if self.data is None:
            raise PermissionDenied("No recording was provided by the browser.")
        return BufferedAudioStream(self.data, self.mime_type)
