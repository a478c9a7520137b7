"""Question-to-query retrieval pipeline.

The service narrows the schema, generates and validates SQL, runs it with a
single retry, and keeps per-session conversation history for follow-ups.
"""

from .service import (
    NlqRetrievalService,
    ask,
    get_retrieval_service,
    render_answer,
)

__all__ = [
    "NlqRetrievalService",
    "ask",
    "get_retrieval_service",
    "render_answer",
]
