"""
Observability for workflow runs.

- Run/node context propagated through a ContextVar
- JSON log lines for production, colourised lines for local work
"""

from noder.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
]
