import os

# --- Models ---
DEFAULT_MODEL_NAME = os.environ.get("BUBBLE_DEFAULT_MODEL", "gemini-2.5-flash")
AUTONOMOUS_MODEL_NAME = os.environ.get("BUBBLE_AUTONOMOUS_MODEL", "gemini-2.5-flash")
SUMMARIZER_MODEL_NAME = os.environ.get("BUBBLE_SUMMARIZER_MODEL", "gemini-2.0-flash-lite-001")
MEMORY_EXTRACTION_MODEL_NAME = os.environ.get("BUBBLE_MEMORY_MODEL", "gemini-2.5-flash")
TITLE_MODEL_NAME = "gemini-2.5-flash"

# Image model keys as stored on the user profile, mapped to provider model names.
DEFAULT_IMAGE_MODEL = "nano_banana"
IMAGE_MODELS = {
    "nano_banana": "gemini-2.5-flash-image-preview",
    "nano_banana_hd": "gemini-2.5-flash-image",
}
# Used when the global cost-settings record has no entry for the image model.
DEFAULT_IMAGE_COST = 1

SAFETY_SETTINGS = {
    "HARM_CATEGORY_HARASSMENT": "BLOCK_NONE",
    "HARM_CATEGORY_HATE_SPEECH": "BLOCK_NONE",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT": "BLOCK_NONE",
    "HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_NONE",
}

# --- History summarization ---
# Histories at or below this many turns are sent to the agents verbatim.
HISTORY_SUMMARY_THRESHOLD = 20
# Number of most recent turns always kept verbatim after summarization.
HISTORY_RECENT_TURNS = 10

# --- Memory retrieval ---
MEMORY_QUERY_RESULTS = 8
MEMORY_CONTEXT_MAX_ITEMS = 25
# Per-user store handles kept open at once; the least recently used is evicted first.
MEMORY_STORE_CACHE_SIZE = 64
MEMORY_LAYERS = ("personal", "project", "codebase", "aesthetic")
CHROMA_DB_PATH = os.environ.get("BUBBLE_CHROMA_PATH", os.path.join(os.path.dirname(__file__), ".sandbox", "chroma_db"))

# --- Pro-Max plan generation ---
PLAN_GENERATION_MAX_ATTEMPTS = 3
PLAN_GENERATION_BASE_DELAY = 1.0

# --- Audit trail ---
AUDIT_LOG_PATH = os.environ.get("BUBBLE_AUDIT_LOG", os.path.join(os.path.dirname(__file__), ".sandbox", "audit_trail.csv"))

# --- Server ---
SERVER_PORT = int(os.environ.get("BUBBLE_PORT", "5001"))
DEBUG_MODE = False

NEW_CHAT_NAME = "New Chat"
