"""Lexical and vector similarity helpers."""

import re

import numpy as np

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "must", "shall", "and", "or", "but", "if",
        "of", "to", "in", "on", "at", "by", "for", "with", "from", "as",
        "it", "its", "this", "that", "these", "those", "what", "which", "who",
        "how", "when", "where", "why", "i", "you", "we", "they", "he", "she",
        "me", "my", "your", "our", "their", "not", "no", "so", "than", "then",
        "can", "about", "into", "there", "here", "also", "just",
        "の", "は", "が", "を", "に", "で", "と", "も", "や", "から",
    }
)

_WORD_PATTERN = re.compile(r"\w+")
_SPACE_PATTERN = re.compile(r"\s+")


def tokenize_words(text: str) -> list[str]:
    """Lower-cased word tokens in order, stop words included."""
    return _WORD_PATTERN.findall(text.lower())


def content_words(text: str) -> list[str]:
    """Lower-cased word tokens without stop words or single characters."""
    return [w for w in tokenize_words(text) if w not in STOP_WORDS and len(w) > 1]


def normalize_text(text: str) -> str:
    """Lower-case and collapse whitespace."""
    return _SPACE_PATTERN.sub(" ", text.strip().lower())


def jaccard_similarity(left: set[str], right: set[str]) -> float:
    """Jaccard index of two word sets (0.0 when both are empty)."""
    if not left and not right:
        return 0.0
    return len(left & right) / len(left | right)


def lexical_overlap(query: str, content: str) -> float:
    """Share of query words present in content, boosted for verbatim matches.

    Args:
        query: Query text
        content: Candidate text

    Returns:
        Similarity in [0, 1]
    """
    query_words = set(content_words(query))
    if not query_words:
        return 0.0
    content_set = set(content_words(content))
    score = len(query_words & content_set) / len(query_words)

    normalized_query = normalize_text(query)
    if normalized_query and normalized_query in normalize_text(content):
        score += 0.3
    return min(score, 1.0)


def coverage(words: set[str], reference: set[str]) -> float:
    """Share of ``words`` found in ``reference`` (0.0 for no words)."""
    if not words:
        return 0.0
    return len(words & reference) / len(words)


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """L2-normalize each row; zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def cosine_similarity(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between one vector and each row of a matrix.

    Args:
        query: 1-D query vector
        matrix: 2-D matrix of row vectors

    Returns:
        1-D array of similarities in [-1, 1]
    """
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0], dtype=np.float32)
    rows = normalize_rows(matrix.astype(np.float32))
    return rows @ (query.astype(np.float32) / query_norm)
