"""Rendering of compressed segments into a labeled context window."""

from collections.abc import Sequence
from xml.sax.saxutils import escape, quoteattr

from context_engine.config.settings import Settings
from context_engine.models.candidate import ContextCandidate, ContextPriority, ContextSource
from context_engine.models.context import (
    CompressedSegment,
    CompressionMethod,
    ContextSection,
    ContextWindow,
    OutputFormat,
    QualityMetrics,
    StructureLayout,
)
from context_engine.models.request import ConversationMessage
from context_engine.utils.token_counter import TokenCounter

SOURCE_TITLES = {
    ContextSource.CONVERSATION: "Conversation",
    ContextSource.EPISODIC: "Episodic Memory",
    ContextSource.SEMANTIC: "Knowledge",
    ContextSource.STATE: "Agent State",
    ContextSource.KNOWLEDGE: "Knowledge Base",
    ContextSource.TOOL: "Tool Context",
}

PRIORITY_TITLES = {
    ContextPriority.CRITICAL: "Critical",
    ContextPriority.HIGH: "High Priority",
    ContextPriority.MEDIUM: "Supporting Context",
    ContextPriority.LOW: "Background",
    ContextPriority.OPTIONAL: "Optional",
}

METHOD_COHERENCE = {
    CompressionMethod.NONE: 1.0,
    CompressionMethod.TEMPLATE: 0.95,
    CompressionMethod.EXTRACTIVE: 0.8,
    CompressionMethod.SEMANTIC: 0.6,
    CompressionMethod.TRUNCATION: 0.5,
}

MODEL_FORMATS = (
    ("claude", OutputFormat.XML),
    ("anthropic", OutputFormat.XML),
    ("gpt", OutputFormat.MARKDOWN),
    ("openai", OutputFormat.MARKDOWN),
    ("o1", OutputFormat.MARKDOWN),
    ("llama", OutputFormat.MINIMAL),
    ("mistral", OutputFormat.MINIMAL),
)

NO_HISTORY_TEXT = "No recent conversation history available."

# Sub-scores reported for the fallback context
FALLBACK_METRICS = QualityMetrics(
    relevance=0.5,
    coherence=0.7,
    completeness=0.2,
    diversity=0.1,
    freshness=0.9,
    token_efficiency=0.6,
)


def format_for_model(model_name: str) -> OutputFormat:
    """Pick the rendering template suited to a model family.

    Args:
        model_name: Model identifier such as "gpt-4o" or "claude-3-5-sonnet"

    Returns:
        Output format (markdown when the family is unknown)
    """
    lowered = model_name.lower()
    for marker, output_format in MODEL_FORMATS:
        if marker in lowered:
            return output_format
    return OutputFormat.MARKDOWN


class ContextStructurer:
    """Groups segments into sections, renders them and scores the result.

    ``structure`` is a pure function of its arguments: no I/O and no
    mutation of the segments or the pool.
    """

    def __init__(self, settings: Settings, token_counter: TokenCounter) -> None:
        self.settings = settings
        self.token_counter = token_counter

    def structure(
        self,
        segments: Sequence[CompressedSegment],
        target_format: OutputFormat | None = None,
        *,
        layout: StructureLayout | None = None,
        token_budget: int | None = None,
        pool: Sequence[ContextCandidate] | None = None,
        build_time_ms: float = 0.0,
    ) -> ContextWindow:
        """Render segments into a context window.

        Args:
            segments: Segments in selection order
            target_format: Rendering template (defaults to the configured one)
            layout: Section grouping (defaults to the configured one)
            token_budget: Budget the window was built for
            pool: Retrieved candidates the selection was drawn from; quality
                coverage is measured against it (defaults to the segments)
            build_time_ms: Time spent building so far

        Returns:
            ContextWindow with token count and quality metrics
        """
        target_format = target_format or self.settings.output_format
        layout = layout or self.settings.structure_layout
        token_budget = token_budget or self.settings.default_token_budget

        sections = [
            self._render_section(key, title, members, target_format)
            for key, title, members in self._group(segments, layout)
        ]
        text = self._render_window(sections, target_format)
        quality = self.quality(segments, pool)

        sources: list[ContextSource] = []
        for segment in segments:
            if segment.source not in sources:
                sources.append(segment.source)

        return ContextWindow(
            sections=tuple(sections),
            text=text,
            total_tokens=self.token_counter.count(text),
            token_budget=token_budget,
            quality=quality,
            quality_score=quality.overall,
            sources_used=tuple(sources),
            build_time_ms=build_time_ms,
            layout=layout,
            output_format=target_format,
        )

    def _group(
        self, segments: Sequence[CompressedSegment], layout: StructureLayout
    ) -> list[tuple[str, str, tuple[CompressedSegment, ...]]]:
        if not segments:
            return []
        if layout == StructureLayout.FLAT:
            return [("context", "Context", tuple(segments))]

        if layout == StructureLayout.BY_PRIORITY:
            groups = []
            for tier in ContextPriority.ordered():
                members = tuple(s for s in segments if s.priority == tier)
                if members:
                    groups.append((tier.value, PRIORITY_TITLES[tier], members))
            return groups

        by_source: dict[ContextSource, list[CompressedSegment]] = {}
        for segment in segments:
            by_source.setdefault(segment.source, []).append(segment)
        return [
            (source.value, SOURCE_TITLES[source], tuple(members))
            for source, members in by_source.items()
        ]

    def _render_section(
        self,
        key: str,
        title: str,
        segments: tuple[CompressedSegment, ...],
        target_format: OutputFormat,
    ) -> ContextSection:
        if target_format == OutputFormat.XML:
            items = "\n".join(self._render_xml_item(s) for s in segments)
            text = f"<section name={quoteattr(title)}>\n{items}\n</section>"
        elif target_format == OutputFormat.MINIMAL:
            text = f"[{title}]\n" + " | ".join(s.text for s in segments)
        else:
            items = "\n\n".join(self._render_markdown_item(s) for s in segments)
            text = f"## {title}\n\n{items}"

        return ContextSection(
            key=key,
            title=title,
            segments=segments,
            text=text,
            tokens=self.token_counter.count(text),
        )

    @staticmethod
    def _render_markdown_item(segment: CompressedSegment) -> str:
        title = segment.candidate.metadata.get("title")
        if title:
            return f"### {title}\n{segment.text}"
        return segment.text

    @staticmethod
    def _render_xml_item(segment: CompressedSegment) -> str:
        attributes = (
            f"source={quoteattr(segment.source.value)} "
            f"priority={quoteattr(segment.priority.value)}"
        )
        title = segment.candidate.metadata.get("title")
        if title:
            attributes += f" title={quoteattr(str(title))}"
        return f"<item {attributes}>{escape(segment.text)}</item>"

    @staticmethod
    def _render_window(sections: Sequence[ContextSection], target_format: OutputFormat) -> str:
        if not sections:
            return ""
        if target_format == OutputFormat.XML:
            body = "\n".join(section.text for section in sections)
            return f"<context>\n{body}\n</context>"
        if target_format == OutputFormat.MINIMAL:
            return "\n".join(section.text for section in sections)
        return "# Context\n\n" + "\n\n".join(section.text for section in sections)

    def quality(
        self,
        segments: Sequence[CompressedSegment],
        pool: Sequence[ContextCandidate] | None = None,
    ) -> QualityMetrics:
        """Score an assembled window against the pool it was drawn from.

        Coverage-style sub-scores (relevance, completeness, diversity,
        freshness) compare what was included to what was available, so
        including more of the pool never lowers them.

        Args:
            segments: Included segments
            pool: Retrieved candidates (defaults to the segments' candidates)

        Returns:
            QualityMetrics with every sub-score in [0, 1]
        """
        if not segments:
            return QualityMetrics()

        included = [s.candidate for s in segments]
        pool = list(pool) if pool else included
        included_ids = {c.id for c in included}

        def share(value, candidates) -> float:
            available = sum(value(c) for c in candidates)
            if available <= 0:
                return 1.0
            taken = sum(value(c) for c in candidates if c.id in included_ids)
            return min(taken / available, 1.0)

        relevance = share(lambda c: c.relevance.composite, pool)
        completeness = share(lambda c: c.priority.weight, pool)
        freshness = share(lambda c: c.relevance.temporal_relevance, pool)

        pool_sources = {c.source for c in pool}
        diversity = len({c.source for c in included} & pool_sources) / len(pool_sources)

        coherence = sum(METHOD_COHERENCE[s.method] for s in segments) / len(segments)
        original = sum(s.original_tokens for s in segments)
        compressed = sum(s.compressed_tokens for s in segments)
        token_efficiency = compressed / original if original else 1.0

        return QualityMetrics(
            relevance=relevance,
            coherence=coherence,
            completeness=completeness,
            diversity=diversity,
            freshness=freshness,
            token_efficiency=token_efficiency,
        )

    def fallback_window(
        self,
        messages: Sequence[ConversationMessage],
        token_budget: int,
        target_format: OutputFormat | None = None,
        build_time_ms: float = 0.0,
    ) -> ContextWindow:
        """Minimal context from the most recent conversation turns.

        Turns are dropped oldest first until the rendered window fits the
        budget; with no usable turns a placeholder line is rendered.

        Args:
            messages: Conversation messages, oldest first
            token_budget: Budget the window must fit
            target_format: Rendering template
            build_time_ms: Time spent before falling back

        Returns:
            ContextWindow flagged as fallback with the fixed fallback score
        """
        target_format = target_format or self.settings.output_format
        turns = list(messages)[-self.settings.fallback_turns :] if self.settings.fallback_turns else []
        title = SOURCE_TITLES[ContextSource.CONVERSATION]

        while True:
            lines = [f"{m.role}: {m.content}" for m in turns] or [NO_HISTORY_TEXT]
            section = self._render_fallback_section(title, lines, target_format)
            text = self._render_window([section], target_format)
            tokens = self.token_counter.count(text)
            if tokens <= token_budget or not turns:
                break
            turns = turns[1:]

        if tokens > token_budget:
            text = self.token_counter.truncate(text, token_budget)
            tokens = self.token_counter.count(text)

        return ContextWindow(
            sections=(section,),
            text=text,
            total_tokens=tokens,
            token_budget=token_budget,
            quality=FALLBACK_METRICS,
            quality_score=self.settings.fallback_quality_score,
            sources_used=(ContextSource.CONVERSATION,) if turns else (),
            build_time_ms=build_time_ms,
            layout=StructureLayout.BY_SOURCE,
            output_format=target_format,
            fallback=True,
        )

    def _render_fallback_section(
        self, title: str, lines: list[str], target_format: OutputFormat
    ) -> ContextSection:
        if target_format == OutputFormat.XML:
            items = "\n".join(f"<item source=\"conversation\">{escape(line)}</item>" for line in lines)
            text = f"<section name={quoteattr(title)}>\n{items}\n</section>"
        elif target_format == OutputFormat.MINIMAL:
            text = f"[{title}]\n" + " | ".join(lines)
        else:
            text = f"## {title}\n\n" + "\n".join(lines)
        return ContextSection(
            key=ContextSource.CONVERSATION.value,
            title=title,
            segments=(),
            text=text,
            tokens=self.token_counter.count(text),
        )
