"""
Exception types and the shared user-facing error classifier.

Provider and persistence failures are raised as exceptions and caught at the
router boundary or at an agent's own top-level boundary, where
`get_user_friendly_error` turns them into text a user can act on. Domain
outcomes such as insufficient credits are not exceptions at all; they are
ordinary agent results.
"""
import re


class AgentError(Exception):
    """Base class for failures raised inside the agent core."""


class ProviderResponseError(AgentError):
    """The completion provider returned nothing usable (blocked, empty or unparseable)."""


class AgentResponseError(AgentError):
    """A structured response parsed but lacked the fields the agent requires."""


class PlanGenerationError(AgentError):
    """Plan generation failed on every allowed attempt."""


class RecordNotFoundError(AgentError):
    """A persistence lookup found no record for the given id."""


MAX_DETAIL_LENGTH = 300

# Ordered: the first matching rule wins.
ERROR_RULES = [
    (("schema", "cache"), "There was a quick hiccup with the database. A page refresh usually fixes this. Please refresh and try again."),
    (("fetch", "network", "rpc failed", "connection", "timed out", "deadline exceeded"), "It seems there's a connection issue. Please check your internet and disable any ad-blockers, then try again."),
    (("api key", "api_key", "unauthorized", "permission denied", "unauthenticated"), "There seems to be an issue with your API key. Please check it in your settings."),
    (("rate limit", "quota", "resource exhausted", "resource_exhausted", "429"), "Looks like we're making too many requests. Please wait a moment and try again."),
]

_SECRET_PATTERN = re.compile(r"AIza[0-9A-Za-z_\-]{20,}")


def sanitize_error_message(message: str) -> str:
    """Strips credentials and truncates an error message for display."""
    cleaned = _SECRET_PATTERN.sub("[redacted]", message or "").strip()
    if len(cleaned) > MAX_DETAIL_LENGTH:
        cleaned = cleaned[:MAX_DETAIL_LENGTH] + "..."
    return cleaned


def get_user_friendly_error(error: BaseException) -> str:
    """
    Maps an exception to a short, actionable message by substring rules.

    Args:
        error: Any exception raised by the provider, the gateway or an agent.

    Returns:
        A non-empty, user-safe string.
    """
    raw = str(error) if error is not None else ""
    if not raw:
        return "An unexpected error occurred. Please try again."
    lowered = raw.lower()
    for needles, friendly in ERROR_RULES:
        if any(needle in lowered for needle in needles):
            return friendly
    return f"Something went wrong. Here are the details: {sanitize_error_message(raw)}"
