import streamlit as st
import asyncio
import logging
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Coroutine, List

from api_client import ClinicApiClient
from audio_capture import BufferedMicrophone
from config import configure_logging, settings
from models import Message, Sender
from orchestrator import ConversationOrchestrator, MalformedInput, format_admin_payload

# The browser widget hands over finished recordings as WAV.
RECORDING_MIME = "audio/wav"

configure_logging()
logger = logging.getLogger(__name__)

# --- Page and Session Configuration ---
st.set_page_config(
    page_title="Smart Clinic Assistant",
    page_icon="🩺",
    layout="centered"
)


# --- Background Event Loop ---
@st.cache_resource
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One asyncio loop per process, so suspended turns and dialogs survive script reruns."""
    loop = asyncio.new_event_loop()
    threading.Thread(target=loop.run_forever, name="clinic-chat-loop", daemon=True).start()
    logger.info("Background event loop started.")
    return loop


def dispatch(coro: Coroutine) -> Future:
    """Schedules an orchestrator coroutine on the background loop."""
    future = asyncio.run_coroutine_threadsafe(coro, get_event_loop())
    st.session_state.pending_tasks.append(future)
    return future


async def _call(fn: Callable, *args) -> Any:
    return fn(*args)


def settle(timeout: float) -> None:
    """Waits until every dispatched task is done or the user has to answer a prompt."""
    orchestrator = st.session_state.orchestrator
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        collect_finished_tasks()
        if not st.session_state.pending_tasks or orchestrator.dialogs.pending is not None:
            return
        time.sleep(0.1)
    logger.warning("Gave up waiting for the assistant; the turn is still in flight.")


def collect_finished_tasks() -> None:
    still_running: List[Future] = []
    for future in st.session_state.pending_tasks:
        if not future.done():
            still_running.append(future)
            continue
        try:
            future.result()
        except Exception as e:
            logger.error(f"Orchestrator task failed: {e}", exc_info=True)
            st.error("Something went wrong. Please try again.")
    st.session_state.pending_tasks = still_running


# --- Session State Initialization ---
def initialize_session_state():
    """Initializes all necessary keys in Streamlit's session state."""
    if 'api_base_url' not in st.session_state:
        try:
            st.session_state.api_base_url = st.secrets["API_BASE_URL"]
        except (FileNotFoundError, KeyError):
            st.session_state.api_base_url = settings.api_base_url

    if 'orchestrator' not in st.session_state:
        st.session_state.orchestrator = ConversationOrchestrator(
            client=ClinicApiClient(base_url=st.session_state.api_base_url),
            microphone=BufferedMicrophone(None, RECORDING_MIME),
            audio_mime=RECORDING_MIME,
        )

    if 'pending_tasks' not in st.session_state:
        st.session_state.pending_tasks = []

    if 'last_recording_id' not in st.session_state:
        st.session_state.last_recording_id = None

    if 'last_upload_id' not in st.session_state:
        st.session_state.last_upload_id = None

    if 'admin_json' not in st.session_state:
        st.session_state.admin_json = ""


# --- Event Handlers ---

def run_and_rerun(coro: Coroutine, spinner: str = "Thinking...") -> None:
    dispatch(coro)
    with st.spinner(spinner):
        settle(settings.request_timeout_seconds + 5)
    st.rerun()


def answer_prompt(value: bool) -> None:
    orchestrator = st.session_state.orchestrator
    asyncio.run_coroutine_threadsafe(_call(orchestrator.dialogs.respond, value), get_event_loop()).result()
    with st.spinner():
        settle(settings.request_timeout_seconds + 5)
    st.rerun()


async def record_uploaded_clip(orchestrator: ConversationOrchestrator, data: bytes) -> None:
    """Feeds a browser recording through the capture pipeline as one start/stop cycle."""
    orchestrator.audio.microphone = BufferedMicrophone(data, RECORDING_MIME)
    if await orchestrator.toggle_recording():
        await orchestrator.toggle_recording()


# --- UI Display Functions ---

def display_pending_prompt():
    prompt = st.session_state.orchestrator.dialogs.pending
    if prompt is None:
        return
    with st.container(border=True):
        st.markdown(f"**{prompt.text}**")
        if prompt.kind == "confirm":
            yes_col, no_col = st.columns(2)
            if yes_col.button("Yes", key="prompt-yes", use_container_width=True):
                answer_prompt(True)
            if no_col.button("No", key="prompt-no", use_container_width=True):
                answer_prompt(False)
        elif st.button("OK", key="prompt-ok", use_container_width=True):
            answer_prompt(True)


def display_slot_buttons(orchestrator: ConversationOrchestrator, msg: Message):
    show_day = "other days" in msg.text
    columns = st.columns(min(len(msg.slots), 4))
    for i, slot in enumerate(msg.slots):
        label = f"{slot.start_time} · {slot.day[:3].upper()}" if show_day and slot.day else slot.start_time
        if columns[i % len(columns)].button(label, key=f"slot-{msg.id}-{i}",
                                            disabled=not orchestrator.can_send, use_container_width=True):
            run_and_rerun(orchestrator.select_slot(slot))


def display_booking_ticket(orchestrator: ConversationOrchestrator, msg: Message):
    booking = msg.booking_details
    with st.container(border=True):
        st.caption("APPOINTMENT TICKET")
        st.markdown(f"**Patient:** {booking.patient_name} ({booking.phone_number})")
        time_col, place_col = st.columns(2)
        time_col.markdown(f"**Date & Time**  \n{booking.day}, {booking.time}")
        place_col.markdown(f"**Location**  \n{booking.clinic_name}")
        confirm_col, cancel_col = st.columns(2)
        if confirm_col.button("Confirm", key=f"confirm-{msg.id}", type="primary", use_container_width=True):
            run_and_rerun(orchestrator.confirm_booking(msg.id, booking), spinner="Booking...")
        if cancel_col.button("Cancel", key=f"cancel-{msg.id}", use_container_width=True):
            run_and_rerun(_call(orchestrator.cancel_booking, msg.id))


def display_chat_history(orchestrator: ConversationOrchestrator):
    for msg in orchestrator.messages:
        is_user = msg.sender is Sender.USER
        with st.chat_message(name="user" if is_user else "assistant", avatar="🧑" if is_user else "🩺"):
            st.markdown(msg.text)
            if msg.slots:
                display_slot_buttons(orchestrator, msg)
            if msg.booking_details is not None:
                display_booking_ticket(orchestrator, msg)


def display_admin_panel(orchestrator: ConversationOrchestrator):
    with st.expander("🗄️ Database Manager"):
        uploaded = st.file_uploader("1. Upload JSON File", type=["json"])
        if uploaded is not None and uploaded.file_id != st.session_state.last_upload_id:
            st.session_state.last_upload_id = uploaded.file_id
            try:
                st.session_state.admin_json = format_admin_payload(uploaded.getvalue().decode("utf-8"))
            except (MalformedInput, UnicodeDecodeError):
                st.error("Invalid JSON format.")

        st.text_area("2. Or Paste Content Directly", key="admin_json", height=240,
                     placeholder='{ "clinics": [ ... ] }')
        if st.button("Sync to Server", use_container_width=True):
            run_and_rerun(orchestrator.sync_admin_data(st.session_state.admin_json), spinner="Syncing...")


# --- Main Application Logic ---
def main():
    """Defines the main UI and wires widget events to the orchestrator."""
    initialize_session_state()
    collect_finished_tasks()
    orchestrator: ConversationOrchestrator = st.session_state.orchestrator

    st.title("🩺 Smart Clinic Assistant")

    with st.sidebar:
        st.title("⚙️ Actions")
        if st.button("🔄 Reset Chat", use_container_width=True):
            run_and_rerun(orchestrator.reset_conversation(), spinner="")
        display_admin_panel(orchestrator)

    display_pending_prompt()
    display_chat_history(orchestrator)

    if orchestrator.is_busy:
        st.info("The assistant is still working on your last message.")
        if st.button("Refresh"):
            st.rerun()

    recording = st.audio_input("🎤 Voice message", disabled=orchestrator.is_busy)
    if recording is not None and recording.file_id != st.session_state.last_recording_id:
        st.session_state.last_recording_id = recording.file_id
        run_and_rerun(record_uploaded_clip(orchestrator, recording.getvalue()), spinner="Listening...")

    if user_input := st.chat_input("Message H4T Assistant...", disabled=not orchestrator.can_send):
        run_and_rerun(orchestrator.submit_text(user_input))


if __name__ == "__main__":
    main()
