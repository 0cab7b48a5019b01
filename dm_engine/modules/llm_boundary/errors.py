from __future__ import annotations


class LLMUnavailableError(RuntimeError):
    """Raised when the narrator endpoint cannot produce any text."""
