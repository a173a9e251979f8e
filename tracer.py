"""
Execution tracing for the agent core.

Decorated functions are recorded into a nested call log that mirrors the call
stack. Each thread keeps its own stack so that background memory writes do not
interleave with the turn that spawned them; finished top-level calls from every
thread land in one shared log.
"""
import functools
import inspect
import os
import re
import threading


def _sanitize_repr(value):
    """Returns a repr without memory addresses, truncated for readability."""
    rep = re.sub(r"\s+at\s+0x[0-9a-fA-F]+", "", repr(value))
    if len(rep) > 500:
        rep = rep[:500] + "...(truncated)"
    return rep


def _prune(log):
    """Recursively drops empty 'nested_calls' lists from a trace log."""
    if isinstance(log, list):
        return [entry for entry in (_prune(e) for e in log) if entry]
    if isinstance(log, dict) and "nested_calls" in log:
        log["nested_calls"] = _prune(log["nested_calls"])
        if not log["nested_calls"]:
            del log["nested_calls"]
    return log


class Tracer:
    """
    Collects a hierarchical trace of decorated calls.

    The shared `trace_log` only receives root entries; nesting happens on the
    calling thread's private stack.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._local = threading.local()
        self.trace_log = []

    @property
    def call_stack(self) -> list:
        if not hasattr(self._local, "stack"):
            self._local.stack = []
        return self._local.stack

    def reset(self):
        """Clears the shared log and the current thread's stack."""
        with self._lock:
            self.trace_log = []
        self._local.stack = []

    def _attach(self, entry: dict):
        if self.call_stack:
            self.call_stack[-1]["nested_calls"].append(entry)
        else:
            entry["thread"] = threading.current_thread().name
            with self._lock:
                self.trace_log.append(entry)

    def start_trace(self, module: str, func_name: str):
        entry = {"function": f"{module}.{func_name}", "nested_calls": []}
        self._attach(entry)
        self.call_stack.append(entry)

    def end_trace(self, return_value, is_exception: bool = False):
        if not self.call_stack:
            return
        entry = self.call_stack.pop()
        if not entry["nested_calls"]:
            del entry["nested_calls"]
        if is_exception:
            entry["exception"] = _sanitize_repr(return_value)
        elif return_value is not None:
            if not (isinstance(return_value, (list, dict, tuple, str)) and not return_value):
                entry["return_value"] = _sanitize_repr(return_value)

    def add_event(self, event_name: str, details: dict):
        self._attach({"type": "EVENT", "event_name": event_name, "details": details})

    def get_trace(self):
        with self._lock:
            return _prune(list(self.trace_log))


global_tracer = Tracer()


def log_event(event_name: str, details: dict):
    """Records a named event, prefixed with the calling module's name."""
    caller_frame = inspect.stack()[1]
    module_name = os.path.basename(caller_frame.filename).replace(".py", "")
    global_tracer.add_event(f"{module_name}.{event_name}", details)


def trace(func):
    """Logs entry into and exit from `func` on the global tracer."""
    if func.__module__ == "tracer":
        return func

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        module_name = os.path.basename(inspect.getfile(func)).replace(".py", "")
        global_tracer.start_trace(module_name, func.__qualname__)
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            global_tracer.end_trace(e, is_exception=True)
            raise
        global_tracer.end_trace(result)
        return result

    return wrapper
