"""Budgeted, tier-by-tier candidate selection."""

import logging
import math
from collections.abc import Mapping, Sequence

from context_engine.config.settings import Settings
from context_engine.exceptions import InvalidRequestError
from context_engine.models.candidate import (
    COMPONENT_WEIGHT_KEYS,
    ContextCandidate,
    ContextPriority,
)
from context_engine.models.context import OptimizationGoal, OptimizedSelection
from context_engine.utils.similarity import content_words, jaccard_similarity

logger = logging.getLogger(__name__)

SAME_SOURCE_SIMILARITY = 0.3
CONTENT_SIMILARITY_WEIGHT = 0.7


class ContextOptimizer:
    """Selects the subset of candidates that best serves a goal within budget.

    Every critical candidate is included unconditionally. The remaining
    tiers are filled in order (high, medium, low, optional); within a tier
    candidates are taken in the active strategy's order until the next one
    would not fit, which ends that tier. Equal scores fall back to the
    candidates' input order, so identical inputs give identical selections.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._balanced_weights = dict(settings.balanced_weights)
        self._balanced_total = sum(self._balanced_weights.values())

    def optimize(
        self,
        candidates: Sequence[ContextCandidate],
        token_budget: int,
        goal: OptimizationGoal = OptimizationGoal.BALANCED,
        priority_overrides: Mapping[str, ContextPriority] | None = None,
    ) -> OptimizedSelection:
        """Select candidates for one request.

        Args:
            candidates: Scored candidate pool in retrieval order
            token_budget: Token budget for the selected content
            goal: Selection strategy
            priority_overrides: Priority keyed by candidate id or source name

        Returns:
            OptimizedSelection in inclusion order

        Raises:
            InvalidRequestError: If the budget is not positive
        """
        if token_budget < 1:
            raise InvalidRequestError(f"token_budget must be >= 1, got {token_budget}")

        pool = self.apply_overrides(candidates, priority_overrides or {})
        order = {candidate.id: index for index, candidate in enumerate(pool)}
        words = {candidate.id: set(content_words(candidate.text)) for candidate in pool}

        tiers: dict[ContextPriority, list[ContextCandidate]] = {
            tier: [] for tier in ContextPriority.ordered()
        }
        for candidate in pool:
            tiers[candidate.priority].append(candidate)

        selected: list[ContextCandidate] = []
        critical = self._order(tiers[ContextPriority.CRITICAL], goal, order, words, selected)
        selected.extend(critical)
        critical_tokens = sum(c.token_estimate for c in critical)
        remaining = token_budget - critical_tokens

        budget_infeasible = critical_tokens > token_budget
        if budget_infeasible:
            logger.warning(
                "Critical candidates need %d tokens, over the %d token budget",
                critical_tokens,
                token_budget,
            )

        for tier in ContextPriority.ordered()[1:]:
            members = tiers[tier]
            if not members:
                continue
            if goal == OptimizationGoal.DIVERSITY:
                taken = self._fill_diverse(members, remaining, order, words, selected)
            else:
                taken = []
                budget_left = remaining
                for candidate in self._order(members, goal, order, words, selected):
                    if candidate.token_estimate > budget_left:
                        break
                    taken.append(candidate)
                    budget_left -= candidate.token_estimate
            remaining -= sum(c.token_estimate for c in taken)
            selected.extend(taken)

        tier_counts = {tier.value: 0 for tier in ContextPriority.ordered()}
        source_distribution: dict[str, int] = {}
        for candidate in selected:
            tier_counts[candidate.priority.value] += 1
            source_distribution[candidate.source.value] = (
                source_distribution.get(candidate.source.value, 0) + 1
            )

        return OptimizedSelection(
            candidates=tuple(selected),
            total_tokens=sum(c.token_estimate for c in selected),
            token_budget=token_budget,
            goal=goal,
            diversity_score=self.diversity_score(selected, words),
            budget_infeasible=budget_infeasible,
            tier_counts=tier_counts,
            source_distribution=source_distribution,
        )

    def apply_overrides(
        self,
        candidates: Sequence[ContextCandidate],
        overrides: Mapping[str, ContextPriority],
    ) -> list[ContextCandidate]:
        """Re-tier candidates; an id match wins over a source-name match."""
        if not overrides:
            return list(candidates)
        result = []
        for candidate in candidates:
            priority = overrides.get(candidate.id) or overrides.get(candidate.source.value)
            result.append(candidate.with_priority(priority) if priority else candidate)
        return result

    def balanced_score(self, candidate: ContextCandidate) -> float:
        """Weighted relevance plus tier bonus, scaled by a token-efficiency bonus."""
        relevance = candidate.relevance
        score = self._balanced_weights.get("priority", 0.0) * candidate.priority.weight
        for key, component in COMPONENT_WEIGHT_KEYS.items():
            score += self._balanced_weights.get(key, 0.0) * getattr(relevance, component)
        score /= self._balanced_total
        return score * (1.0 + 0.1 / math.log(candidate.token_estimate + 2))

    def _order(
        self,
        members: list[ContextCandidate],
        goal: OptimizationGoal,
        order: dict[str, int],
        words: dict[str, set[str]],
        selected: list[ContextCandidate],
    ) -> list[ContextCandidate]:
        if goal == OptimizationGoal.RELEVANCE:
            return sorted(members, key=lambda c: (-c.relevance.composite, order[c.id]))
        if goal == OptimizationGoal.FRESHNESS:
            return sorted(members, key=lambda c: (-c.relevance.temporal_relevance, order[c.id]))
        if goal == OptimizationGoal.DIVERSITY:
            return self._fill_diverse(members, math.inf, order, words, selected)
        return sorted(
            members, key=lambda c: (-self.balanced_score(c), c.token_estimate, order[c.id])
        )

    def _fill_diverse(
        self,
        members: list[ContextCandidate],
        remaining: float,
        order: dict[str, int],
        words: dict[str, set[str]],
        selected: list[ContextCandidate],
    ) -> list[ContextCandidate]:
        """Greedy farthest-point selection within a tier.

        Each step takes the candidate whose composite relevance, boosted by
        its distance to everything chosen so far, is highest. The tier ends
        when that candidate does not fit.
        """
        chosen = list(selected)
        taken: list[ContextCandidate] = []
        pending = list(members)
        while pending:
            best = max(
                pending,
                key=lambda c: (self._diversity_gain(c, chosen, words), -order[c.id]),
            )
            if best.token_estimate > remaining:
                break
            remaining -= best.token_estimate
            pending.remove(best)
            chosen.append(best)
            taken.append(best)
        return taken

    def _diversity_gain(
        self,
        candidate: ContextCandidate,
        chosen: list[ContextCandidate],
        words: dict[str, set[str]],
    ) -> float:
        composite = candidate.relevance.composite
        if not chosen:
            return composite
        nearest = max(self.similarity(candidate, other, words) for other in chosen)
        return composite * (1.0 + (1.0 - nearest))

    def similarity(
        self,
        left: ContextCandidate,
        right: ContextCandidate,
        words: dict[str, set[str]] | None = None,
    ) -> float:
        """Pairwise similarity: same-source bonus plus word-set Jaccard."""
        if words is not None:
            left_words, right_words = words[left.id], words[right.id]
        else:
            left_words, right_words = set(content_words(left.text)), set(content_words(right.text))
        same_source = SAME_SOURCE_SIMILARITY if left.source == right.source else 0.0
        return same_source + CONTENT_SIMILARITY_WEIGHT * jaccard_similarity(left_words, right_words)

    def diversity_score(
        self,
        selected: Sequence[ContextCandidate],
        words: dict[str, set[str]] | None = None,
    ) -> float:
        """Mean distance of each selected item to its nearest selected neighbour."""
        if not selected:
            return 0.0
        if len(selected) == 1:
            return 1.0
        total = 0.0
        for index, candidate in enumerate(selected):
            nearest = max(
                self.similarity(candidate, other, words)
                for other_index, other in enumerate(selected)
                if other_index != index
            )
            total += 1.0 - nearest
        return min(max(total / len(selected), 0.0), 1.0)
