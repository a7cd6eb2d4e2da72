"""Context window tracking for edit lineage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

import tiktoken


@dataclass
class ContextUsage:
    used_tokens: int
    max_tokens: int
    pct: float
    alert_level: str


class ContextTracker:
    """Estimates how much of the model context an edit request's history uses.

    Each edit resends the whole lineage, so usage is measured per request
    rather than accumulated across requests.
    """

    def __init__(
        self,
        max_tokens: int = 128000,
        model: str | None = None,
        tokenizer: Callable[[str], int] | None = None,
    ) -> None:
        self.max_tokens = max_tokens
        self.model = model
        self._tokenizer = tokenizer
        self._encoding = None
        self._encoding_failed = False

    def _estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        if self._tokenizer is not None:
            return self._tokenizer(text)
        encoding = self._resolve_encoding()
        if encoding is not None:
            return len(encoding.encode(text))
        return max(1, int(len(text) / 4))

    def _resolve_encoding(self):
        if self._encoding is not None or self._encoding_failed:
            return self._encoding
        try:
            self._encoding = tiktoken.encoding_for_model(self.model or "gpt-4o")
        except Exception:
            try:
                self._encoding = tiktoken.get_encoding("cl100k_base")
            except Exception:
                # Encodings are downloaded on first use; offline runs estimate from length.
                self._encoding_failed = True
        return self._encoding

    def measure(self, history: Sequence[str], code: str = "") -> ContextUsage:
        used = sum(self._estimate_tokens(item) for item in history) + self._estimate_tokens(code)
        pct = min(used / max(self.max_tokens, 1), 1.0)
        alert = "none"
        if pct >= 0.95:
            alert = "95"
        elif pct >= 0.85:
            alert = "85"
        elif pct >= 0.70:
            alert = "70"
        return ContextUsage(used_tokens=used, max_tokens=self.max_tokens, pct=pct, alert_level=alert)
