"""
Main application bootstrap file.

This script initializes the Flask application and the SocketIO server, wires
the persistence gateway, the memory manager and the conversation service
together, and registers the web routes and SocketIO event handlers.
"""
import logging

from flask import Flask, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

import events
from audit_logger import audit_log
from config import DEBUG_MODE, SERVER_PORT
from conversation import ConversationService
from memory_manager import MemoryManager
from persistence import InMemoryGateway
from tracer import trace

# --- CONFIGURATION ---
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
app = Flask(__name__)
CORS(app)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode="eventlet")
audit_log.register_socketio(socketio)

# --- GLOBAL INITIALIZATION ---
gateway = InMemoryGateway()
memory_manager = MemoryManager()
conversation_service = ConversationService(gateway, memory_manager)
# Register all event handlers from the events module.
events.register_events(socketio, conversation_service)


# --- SERVER ROUTES ---
@app.route("/health")
@trace
def health():
    """Reports that the server is up."""
    return jsonify({"status": "ok"})


# --- MAIN EXECUTION ---
if __name__ == "__main__":
    app.logger.info(f"Starting server on port {SERVER_PORT}.")
    socketio.run(app, host="0.0.0.0", port=SERVER_PORT, debug=DEBUG_MODE)
