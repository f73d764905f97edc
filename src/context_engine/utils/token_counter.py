"""Token counting utilities backed by tiktoken, with a heuristic estimator."""

from functools import lru_cache
from typing import Literal

import tiktoken

TokenCounterBackend = Literal["tiktoken", "estimate"]


@lru_cache(maxsize=16)
def _get_encoding(model: str) -> "tiktoken.Encoding":
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        # Fallback to cl100k_base for unknown models
        return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str, model: str = "gpt-4") -> int:
    """Count tokens using tiktoken (accurate method).

    Args:
        text: Text to count tokens for
        model: Model name for tokenizer

    Returns:
        Exact token count
    """
    if not text:
        return 0
    return len(_get_encoding(model).encode(text))


def estimate_tokens(text: str) -> int:
    """Estimate token count without a tokenizer.

    Uses character-based estimation with different ratios for
    CJK characters vs other text. Any non-empty text counts as at
    least one token.

    Args:
        text: Text to estimate tokens for

    Returns:
        Estimated token count
    """
    if not text:
        return 0

    # Count CJK characters (Japanese, Chinese, Korean)
    cjk_count = sum(
        1
        for char in text
        if "\u4e00" <= char <= "\u9fff"  # CJK Unified Ideographs
        or "\u3040" <= char <= "\u309f"  # Hiragana
        or "\u30a0" <= char <= "\u30ff"  # Katakana
        or "\uac00" <= char <= "\ud7af"  # Hangul
    )

    # CJK: approximately 0.7 tokens per character
    # Other text: approximately len/4 (rough average)
    cjk_tokens = int(cjk_count * 0.7)
    remaining_chars = len(text) - cjk_count
    other_tokens = remaining_chars // 4

    return max(1, cjk_tokens + other_tokens)


class TokenCounter:
    """Counts tokens with a configured backend.

    One instance is shared by every pipeline stage of an engine so that
    selection, compression and rendering agree on sizes.
    """

    def __init__(self, backend: TokenCounterBackend = "tiktoken", model: str = "gpt-4"):
        if backend not in ("tiktoken", "estimate"):
            raise ValueError(f"Unknown token counter backend: {backend}")
        self.backend = backend
        self.model = model

    def count(self, text: str) -> int:
        """Count tokens in text."""
        if self.backend == "tiktoken":
            return count_tokens(text, self.model)
        return estimate_tokens(text)

    def truncate(self, text: str, max_tokens: int) -> str:
        """Return the longest prefix of text that fits in max_tokens.

        Args:
            text: Text to cut
            max_tokens: Token limit

        Returns:
            Prefix of text (possibly empty)
        """
        if max_tokens <= 0:
            return ""
        if self.count(text) <= max_tokens:
            return text

        if self.backend == "tiktoken":
            encoding = _get_encoding(self.model)
            prefix = encoding.decode(encoding.encode(text)[:max_tokens])
            # Decoding a partial multi-byte token can grow the count
            while prefix and self.count(prefix) > max_tokens:
                prefix = prefix[:-1]
            return prefix

        # Binary search on character length for the estimator
        low, high = 0, len(text)
        while low < high:
            mid = (low + high + 1) // 2
            if self.count(text[:mid]) <= max_tokens:
                low = mid
            else:
                high = mid - 1
        return text[:low]

    @classmethod
    def from_settings(cls, settings) -> "TokenCounter":
        return cls(backend=settings.token_counter, model=settings.token_counter_model)
