"""
Handles all SocketIO event logic for the application.

This module is the real-time surface of the agent core. Each client request
(send a message, answer a clarification, execute a plan) is handed to the
ConversationService on a background task. The service itself blocks on model
calls, so it runs on eventlet's native thread pool; everything it streams or
returns is queued and pushed back to the requesting client from the green
thread. It is designed to be registered by the main app.py script.
"""

import logging
import queue
from typing import Any, Callable, Optional

from eventlet import tpool
from flask import request
from flask_socketio import SocketIO

from conversation import ConversationService
from data_models import Plan
from errors import get_user_friendly_error
from tracer import global_tracer, trace
from utils import StreamSink, parse_stream_chunk

# A reference to the ConversationService initialized in app.py
_service: Optional[ConversationService] = None

STREAM_POLL_INTERVAL = 0.05

Post = Callable[[str, dict], None]


def _run_in_pool(socketio: SocketIO, session_id: str, call: Callable[[Post], Any]) -> Any:
    """
    Runs a blocking service call in eventlet's thread pool.

    `call` receives a `post(event, payload)` function. Posted events are
    emitted to the client from this green thread while the call runs, and
    any left over are flushed once it returns.

    Returns:
        The call's return value. Exceptions raised by the call are re-raised.
    """
    outbox: queue.Queue = queue.Queue()
    outcome: dict[str, Any] = {}

    def worker() -> None:
        try:
            outcome["result"] = tpool.execute(call, lambda event, payload: outbox.put((event, payload)))
        except Exception as e:
            outcome["error"] = e

    socketio.start_background_task(worker)
    while True:
        finished = bool(outcome)
        while True:
            try:
                event, payload = outbox.get_nowait()
            except queue.Empty:
                break
            socketio.emit(event, payload, to=session_id)
        if finished:
            break
        socketio.sleep(STREAM_POLL_INTERVAL)

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def _stream_sink(post: Post, chat_id: str) -> StreamSink:
    """Builds a sink that posts chunks for one chat, routing structured events by type."""

    def sink(chunk: str) -> None:
        event = parse_stream_chunk(chunk)
        if event is not None:
            post(event["type"], {"chat_id": chat_id, "text": event.get("text", "")})
        else:
            post("stream_chunk", {"chat_id": chat_id, "chunk": chunk})

    return sink


def _emit_error(socketio: SocketIO, session_id: str, error: Exception, chat_id: Optional[str] = None) -> None:
    socketio.emit("error_message", {"chat_id": chat_id, "error": get_user_friendly_error(error)}, to=session_id)


@trace
def run_send_message(socketio: SocketIO, session_id: str, data: dict) -> None:
    """Background task: dispatches one user message and emits the result."""
    chat_id = data.get("chat_id")
    try:
        result = _run_in_pool(
            socketio,
            session_id,
            lambda post: _service.send_message(
                chat_id=chat_id,
                user_id=data.get("user_id"),
                text=data.get("text", ""),
                api_key=data.get("api_key", ""),
                workspace_mode=data.get("workspace_mode", "cocreator"),
                on_stream_chunk=_stream_sink(post, chat_id),
            ),
        )
    except Exception as e:
        logging.error(f"send_message failed for chat '{chat_id}': {e}")
        _emit_error(socketio, session_id, e, chat_id)
        return
    socketio.emit("agent_result", {"chat_id": chat_id, "result": result.model_dump(by_alias=True)}, to=session_id)


@trace
def run_submit_clarification(socketio: SocketIO, session_id: str, data: dict) -> None:
    """Background task: resumes a clarification with the user's answers."""
    chat_id = data.get("chat_id")
    try:
        result = _run_in_pool(
            socketio,
            session_id,
            lambda post: _service.submit_clarification(
                message_id=data.get("message_id"),
                answers=list(data.get("answers") or []),
                user_id=data.get("user_id"),
                api_key=data.get("api_key", ""),
                workspace_mode=data.get("workspace_mode", "cocreator"),
                on_stream_chunk=_stream_sink(post, chat_id),
            ),
        )
    except Exception as e:
        logging.error(f"submit_clarification failed for message '{data.get('message_id')}': {e}")
        _emit_error(socketio, session_id, e, chat_id)
        return
    socketio.emit("agent_result", {"chat_id": chat_id, "result": result.model_dump(by_alias=True)}, to=session_id)


@trace
def run_execute_plan(socketio: SocketIO, session_id: str, data: dict) -> None:
    """Background task: executes a stored plan, emitting progress after every task transition."""
    message_id = data.get("message_id")

    def execute(post: Post) -> Plan:
        return _service.execute_plan(
            message_id=message_id,
            user_id=data.get("user_id"),
            api_key=data.get("api_key", ""),
            on_update=lambda plan: post("plan_update", {"message_id": message_id, "plan": plan.model_dump(by_alias=True)}),
        )

    try:
        plan = _run_in_pool(socketio, session_id, execute)
    except Exception as e:
        logging.error(f"execute_plan failed for message '{message_id}': {e}")
        _emit_error(socketio, session_id, e)
        return
    socketio.emit("plan_complete", {"message_id": message_id, "plan": plan.model_dump(by_alias=True)}, to=session_id)



@trace
def register_events(socketio: SocketIO, service: ConversationService):
    """
    Registers all SocketIO event handlers with the main application.

    This function acts as the entry point for this module, setting up the
    global service reference and connecting the event handlers.
    """
    global _service
    _service = service

    @socketio.on("connect")
    @trace
    def handle_connect(auth=None) -> None:
        logging.info(f"Client connected: {request.sid}")

    @socketio.on("disconnect")
    @trace
    def handle_disconnect(auth=None) -> None:
        logging.info(f"Client disconnected: {request.sid}")

    @socketio.on("send_message")
    @trace
    def handle_send_message(data: dict) -> None:
        """
        Receives a user message and starts the turn in a background task.

        Args:
            data: {"chat_id", "user_id", "text", "api_key", "workspace_mode"}
        """
        session_id = request.sid
        if not (data.get("text") or "").strip():
            socketio.emit("error_message", {"chat_id": data.get("chat_id"), "error": "Message is empty."}, to=session_id)
            return
        socketio.start_background_task(run_send_message, socketio, session_id, data)

    @socketio.on("submit_clarification")
    @trace
    def handle_submit_clarification(data: dict) -> None:
        """
        Receives answers to a clarification.

        Args:
            data: {"chat_id", "message_id", "answers", "user_id", "api_key", "workspace_mode"}
        """
        socketio.start_background_task(run_submit_clarification, socketio, request.sid, data)

    @socketio.on("execute_plan")
    @trace
    def handle_execute_plan(data: dict) -> None:
        """
        Starts executing every remaining task of a plan.

        Args:
            data: {"message_id", "user_id", "api_key"}
        """
        socketio.start_background_task(run_execute_plan, socketio, request.sid, data)

    @socketio.on("reset_tracer")
    @trace
    def handle_reset_tracer(data=None):
        """Handles a request from the scenario runner to reset the global tracer."""
        logging.info("Received request to reset global tracer.")
        global_tracer.reset()

    @socketio.on("get_trace_log")
    @trace
    def handle_get_trace_log(data=None):
        """
        Handles a request from the scenario runner to get the trace log
        and sends it back.
        """
        logging.info("Received request to get trace log.")
        socketio.emit("trace_log_response", {"trace": global_tracer.get_trace()}, to=request.sid)
