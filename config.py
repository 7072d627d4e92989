import os
import logging

from dotenv import load_dotenv
from pydantic import BaseModel

# --- Environment Variable Loading ---
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration for the clinic booking chat client."""
    api_base_url: str = os.getenv("CLINIC_API_BASE_URL", "https://webandmobile-clinic-backend.hf.space")
    chat_path: str = os.getenv("CLINIC_CHAT_PATH", "/api/chat")
    transcribe_path: str = os.getenv("CLINIC_TRANSCRIBE_PATH", "/api/transcribe")
    book_path: str = os.getenv("CLINIC_BOOK_PATH", "/api/book")
    admin_sync_path: str = os.getenv("CLINIC_ADMIN_SYNC_PATH", "/api/admin/update-db")
    request_timeout_seconds: float = float(os.getenv("CLINIC_REQUEST_TIMEOUT", "45.0"))
    greeting: str = os.getenv(
        "CLINIC_GREETING",
        "Hello! I am the Health4Travel Assistant. Tell me where and when you need a doctor.",
    )
    audio_flush_interval_ms: int = int(os.getenv("CLINIC_AUDIO_FLUSH_MS", "1000"))
    audio_primary_mime: str = os.getenv("CLINIC_AUDIO_PRIMARY_MIME", "audio/webm")
    audio_fallback_mime: str = os.getenv("CLINIC_AUDIO_FALLBACK_MIME", "audio/ogg")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


# --- Logging Configuration ---
def configure_logging(level: str = None) -> None:
    """Configure console logging with the shared format."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )
