import csv
import json
import os
import threading
from datetime import datetime

from config import AUDIT_LOG_PATH

HEADER = [
    "Timestamp",
    "Event",
    "UserID",
    "ChatID",
    "ProjectID",
    "Agent",
    "Outcome",
    "Details",
]


class AuditLogger:
    """
    Appends one CSV row per orchestration event (agent dispatch, plan task,
    background memory write) and optionally broadcasts it over Socket.IO.
    """

    def __init__(self, filepath=AUDIT_LOG_PATH):
        self.filepath = filepath
        self.lock = threading.Lock()
        self.socketio = None
        self._initialized = False

    def register_socketio(self, sio):
        """Allows the main app to register the Socket.IO instance."""
        self.socketio = sio

    def set_path(self, filepath):
        with self.lock:
            self.filepath = filepath
            self._initialized = False

    def _initialize_file(self):
        """Creates the CSV file and writes the header if it doesn't exist. Caller holds the lock."""
        os.makedirs(os.path.dirname(self.filepath), exist_ok=True)
        if not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0:
            with open(self.filepath, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(HEADER)
        self._initialized = True

    def log_event(self, event, user_id=None, chat_id=None, project_id=None, agent=None, outcome=None, details=None):
        timestamp = datetime.now().isoformat()

        def serialize(value):
            if value is None:
                return "N/A"
            if isinstance(value, (dict, list)):
                return json.dumps(value)
            return str(value)

        row = [
            timestamp,
            serialize(event),
            serialize(user_id),
            serialize(chat_id),
            serialize(project_id),
            serialize(agent),
            serialize(outcome),
            json.dumps(details) if details is not None else "",
        ]

        with self.lock:
            if not self._initialized:
                self._initialize_file()
            with open(self.filepath, "a", newline="", encoding="utf-8") as f:
                csv.writer(f, quoting=csv.QUOTE_ALL).writerow(row)

            if self.socketio:
                broadcast = {
                    "event": event,
                    "chat_id": chat_id,
                    "project_id": project_id,
                    "agent": agent,
                    "outcome": outcome,
                    "details": details,
                }
                self.socketio.start_background_task(self.socketio.emit, "new_audit_event", broadcast)


# Create a single, global instance to be used by the entire application
audit_log = AuditLogger()
