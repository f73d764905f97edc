"""Text reduction utilities: template cleanup, extractive and concept summaries."""

import math
import re
from collections import Counter

from context_engine.utils.similarity import STOP_WORDS, content_words, tokenize_words
from context_engine.utils.token_counter import TokenCounter

CUE_WORDS = frozenset({"important", "key", "main", "primary", "essential", "critical"})

_BOILERPLATE_PATTERNS = [
    re.compile(r"^\s*(?:hi|hello|hey|greetings)(?: there)?\s*[,!.]\s*", re.IGNORECASE | re.MULTILINE),
    re.compile(
        r"\b(?:as (?:i )?(?:mentioned|noted|stated|said) (?:before|above|earlier|previously)"
        r"|please note that|it is worth noting that|it should be noted that"
        r"|needless to say|to be honest|basically|hope this helps"
        r"|thanks in advance|best regards|kind regards)\b[,.]?\s*",
        re.IGNORECASE,
    ),
]
_HORIZONTAL_SPACE = re.compile(r"[ \t\f\v]+")
_BLANK_LINES = re.compile(r"\n{2,}")
_JSON_COLON = re.compile(r'"\s*:\s*')
_JSON_COMMA = re.compile(r',\s+"')
_SENTENCE_END = re.compile(r"[.!?。！？](?=\s|$)")


def template_compress(text: str) -> str:
    """Remove whitespace runs, boilerplate phrases and duplicate lines.

    This is the only reduction applied to critical and high priority
    content, so it never drops informative words.

    Args:
        text: Input text

    Returns:
        Cleaned text
    """
    if not text:
        return text

    result = text
    for pattern in _BOILERPLATE_PATTERNS:
        result = pattern.sub("", result)

    result = _JSON_COLON.sub('":', result)
    result = _JSON_COMMA.sub(',"', result)
    result = _HORIZONTAL_SPACE.sub(" ", result)

    lines: list[str] = []
    for line in result.split("\n"):
        line = line.strip()
        if line and lines and lines[-1] == line:
            continue
        lines.append(line)
    result = _BLANK_LINES.sub("\n", "\n".join(lines))
    return result.strip()


def split_sentences(text: str) -> list[str]:
    """Split text into sentences.

    Args:
        text: Input text

    Returns:
        List of sentences
    """
    # Handle Japanese and English sentence boundaries
    pattern = r"(?<=[。！？.!?])\s+|\n+"
    sentences = re.split(pattern, text)
    return [s.strip() for s in sentences if s and s.strip()]


def top_keywords(text: str, limit: int = 10) -> list[str]:
    """Most frequent content words, ties broken by first appearance."""
    words = content_words(text)
    counter = Counter(words)
    first_seen: dict[str, int] = {}
    for index, word in enumerate(words):
        first_seen.setdefault(word, index)
    ranked = sorted(counter, key=lambda w: (-counter[w], first_seen[w]))
    return ranked[:limit]


def sentence_importance(sentence: str, index: int, total: int, keywords: set[str]) -> float:
    """Score a sentence by position, length, keyword density and cue words.

    Args:
        sentence: Sentence to score
        index: Position of the sentence in the document
        total: Number of sentences in the document
        keywords: The document's top keywords

    Returns:
        Importance score (higher is more important)
    """
    score = 0.0
    if index == 0:
        score += 0.3
    if total > 1 and index == total - 1:
        score += 0.2

    words = tokenize_words(sentence)
    if 5 <= len(words) <= 25:
        score += 0.2
    if words:
        score += sum(1 for w in words if w in keywords) / len(words)
        if any(w in CUE_WORDS for w in words):
            score += 0.3
    return score


def extractive_summary(text: str, keep_ratio: float = 0.5) -> str:
    """Keep the most important sentences in their original order.

    Args:
        text: Input text
        keep_ratio: Share of sentences to keep (at least one is kept)

    Returns:
        Summary text, or the input when it has a single sentence
    """
    sentences = split_sentences(text)
    if len(sentences) <= 1:
        return text

    keywords = set(top_keywords(text))
    scored = [
        (index, sentence_importance(sentence, index, len(sentences), keywords))
        for index, sentence in enumerate(sentences)
    ]
    keep = max(1, math.ceil(len(sentences) * keep_ratio))
    # Stable on index so equal scores favor earlier sentences
    chosen = sorted(scored, key=lambda item: (-item[1], item[0]))[:keep]
    kept_indexes = sorted(index for index, _ in chosen)
    return " ".join(sentences[index] for index in kept_indexes)


_ENTITY_PATTERN = re.compile(r"\b[A-Z][\w-]*(?:\s+[A-Z][\w-]*)*")


def extract_concepts(text: str, max_concepts: int = 12) -> list[str]:
    """Extract entity phrases and keywords as a ranked concept list.

    Capitalized phrases come first (by frequency), then the most frequent
    keywords not already covered by an entity.

    Args:
        text: Input text
        max_concepts: Maximum number of concepts returned

    Returns:
        Concepts in rank order
    """
    entities: Counter[str] = Counter()
    order: dict[str, int] = {}
    for match in _ENTITY_PATTERN.finditer(text):
        phrase = match.group(0).strip()
        if phrase.lower() in STOP_WORDS:
            continue
        entities[phrase] += 1
        order.setdefault(phrase, match.start())

    concepts = sorted(entities, key=lambda p: (-entities[p], order[p]))
    covered = {w for phrase in concepts for w in tokenize_words(phrase)}
    for keyword in top_keywords(text, limit=max_concepts * 2):
        if keyword not in covered:
            concepts.append(keyword)
            covered.add(keyword)
    return concepts[:max_concepts]


def semantic_summary(text: str, max_concepts: int = 12) -> str:
    """Reconstruct text as a "; "-joined list of its key concepts."""
    return "; ".join(extract_concepts(text, max_concepts))


def smart_truncate(
    text: str,
    max_tokens: int,
    counter: TokenCounter,
    marker: str = " ...",
) -> str:
    """Truncate text to a token limit at a sentence or word boundary.

    Never raises; a limit of zero or less yields an empty string.

    Args:
        text: Input text
        max_tokens: Token limit for the result
        counter: Token counter used for sizing
        marker: Suffix appended when it still fits

    Returns:
        Truncated text within max_tokens
    """
    if max_tokens <= 0 or not text:
        return ""
    if counter.count(text) <= max_tokens:
        return text

    prefix = counter.truncate(text, max_tokens)
    cut = prefix
    sentence_ends = [m.end() for m in _SENTENCE_END.finditer(prefix)]
    if sentence_ends and sentence_ends[-1] >= len(prefix) // 2:
        cut = prefix[: sentence_ends[-1]]
    else:
        boundary = prefix.rfind(" ")
        if boundary > 0:
            cut = prefix[:boundary]
    cut = cut.rstrip()

    if cut and counter.count(cut + marker) <= max_tokens:
        return cut + marker
    return cut
