"""
Heuristic evaluator: the fallback ranking used when the master model call
is unavailable.

Each valid response gets a weighted composite score built from six factors:

    confidence          30%
    length              15%
    content quality     25%
    efficiency          10%
    parameter balance   10%
    uniqueness          10%

The factors are surface-level proxies (keyword markers, word overlap, timing).
"""
from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

from hivemind.models.schemas import Evaluation, InvocationParams, ModelResult, Ranking

logger = logging.getLogger(__name__)

WEIGHT_CONFIDENCE = 0.30
WEIGHT_LENGTH = 0.15
WEIGHT_CONTENT = 0.25
WEIGHT_EFFICIENCY = 0.10
WEIGHT_PARAMETERS = 0.10
WEIGHT_UNIQUENESS = 0.10

EXAMPLE_MARKERS = ("example", "for instance")
CONTRAST_MARKERS = ("however", "although", "while")
CAUSAL_MARKERS = ("because", "therefore", "since")
FORMATTING_MARKERS = ("**", "*", "-")
HEDGING_PHRASES = ("i don't know", "i'm not sure")


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(max(value, low), high)


# ──────────────────────────────────────────────
# Individual factors
# ──────────────────────────────────────────────

def length_score(output: str) -> float:
    """Peaks at 200-800 trimmed characters."""
    length = len(output.strip())
    if 200 <= length <= 800:
        return 1.0
    if 100 <= length < 200:
        return (length - 100) / 100.0
    if 800 < length <= 1200:
        return 1.0 - (length - 800) / 800.0
    if length < 50:
        return 0.1
    return 0.3


def content_quality_score(output: str) -> float:
    score = 0.5
    lowered = output.lower()

    if any(marker in lowered for marker in EXAMPLE_MARKERS):
        score += 0.1
    if any(marker in lowered for marker in CONTRAST_MARKERS):
        score += 0.1
    if any(marker in lowered for marker in CAUSAL_MARKERS):
        score += 0.1

    sentences = output.split(".")
    if 3 <= len(sentences) <= 10:
        score += 0.1

    if any(marker in output for marker in FORMATTING_MARKERS):
        score += 0.1

    if any(phrase in lowered for phrase in HEDGING_PHRASES):
        score -= 0.2
    if len(output.split()) < 10:
        score -= 0.2

    return _clamp(score)


def efficiency_score(processing_time_ms: int) -> float:
    """Best between 5 and 20 seconds; very fast answers are treated as shallow."""
    seconds = processing_time_ms / 1000.0
    if 5.0 <= seconds <= 20.0:
        return 1.0
    if seconds < 5.0:
        return 0.7 + seconds / 5.0 * 0.3
    if seconds <= 60.0:
        return 1.0 - (seconds - 20.0) / 40.0 * 0.5
    return 0.2


def parameter_balance_score(params: Optional[InvocationParams]) -> float:
    if params is None:
        return 0.5

    score = 0.5
    if 0.4 <= params.temperature <= 0.9:
        score += 0.2
    elif 0.2 <= params.temperature <= 1.2:
        score += 0.1

    if 30 <= params.top_k <= 70:
        score += 0.2
    elif 20 <= params.top_k <= 80:
        score += 0.1

    if 0.8 <= params.top_p <= 0.95:
        score += 0.1

    return min(score, 1.0)


def uniqueness_score(output: str, others: Sequence[str]) -> float:
    """
    Reward moderate divergence from the other responses.

    Args:
        output: The response being scored
        others: Outputs of every other valid response (self excluded)

    Returns:
        0.5 with nothing to compare against, 0.0 for empty text, otherwise a
        value that peaks for uniqueness in [0.3, 0.8]
    """
    if not others:
        return 0.5

    words = output.strip().lower().split()
    if not words:
        return 0.0

    total_similarity = 0.0
    comparisons = 0
    for other in others:
        if other.strip() == output.strip():
            continue
        other_words = set(other.lower().split())
        if not other_words:
            continue

        overlap = sum(1 for word in words if len(word) > 3 and word in other_words)
        total_similarity += overlap / len(words)
        comparisons += 1

    if comparisons == 0:
        return 0.5

    uniqueness = 1.0 - total_similarity / comparisons
    if 0.3 <= uniqueness <= 0.8:
        return uniqueness
    if uniqueness < 0.3:
        return uniqueness * 0.7
    return 0.5 + (1.0 - uniqueness) * 0.5


# ──────────────────────────────────────────────
# Reasoning text
# ──────────────────────────────────────────────

def quality_band(score: float) -> str:
    if score >= 0.8:
        return "exceptional"
    if score >= 0.7:
        return "high"
    if score >= 0.6:
        return "good"
    return "acceptable"


def describe_score(response: ModelResult, score: float) -> str:
    """Short phrase list explaining a single ranking."""
    if response.error:
        return "Error in response"

    reasons = []
    if score >= 0.8:
        reasons.append("excellent quality")
    elif score >= 0.6:
        reasons.append("good quality")
    elif score >= 0.4:
        reasons.append("fair quality")
    else:
        reasons.append("needs improvement")

    confidence = response.confidence or 0.0
    if confidence >= 0.8:
        reasons.append("high confidence")
    elif confidence >= 0.6:
        reasons.append("moderate confidence")

    length = len(response.output.strip())
    if 200 <= length <= 800:
        reasons.append("optimal length")
    elif length < 100:
        reasons.append("too brief")
    elif length > 1000:
        reasons.append("verbose")

    return ", ".join(reasons)


def describe_winner(response: ModelResult, score: float) -> str:
    return (
        f"{response.label} provided the best response with {quality_band(score)} quality "
        f"(score: {score:.2f}). The response demonstrates confidence "
        f"({(response.confidence or 0.0):.2f}), appropriate length "
        f"({len(response.output.strip())} chars), and strong content quality."
    )


# ──────────────────────────────────────────────
# Evaluator
# ──────────────────────────────────────────────

class HeuristicEvaluator:
    """Scores and ranks valid responses without a model call."""

    def score(self, response: ModelResult, peers: Sequence[ModelResult]) -> float:
        """
        Composite score for one response.

        Args:
            response: The response being scored
            peers: Every other valid response (used for uniqueness only)
        """
        if response.error:
            return 0.0
        output = response.output.strip()
        if not output:
            return 0.0

        total = (
            (response.confidence or 0.0) * WEIGHT_CONFIDENCE
            + length_score(output) * WEIGHT_LENGTH
            + content_quality_score(output) * WEIGHT_CONTENT
            + efficiency_score(response.processing_time_ms) * WEIGHT_EFFICIENCY
            + parameter_balance_score(response.params) * WEIGHT_PARAMETERS
            + uniqueness_score(output, [p.output for p in peers if not p.error]) * WEIGHT_UNIQUENESS
        )
        return _clamp(total)

    def evaluate(
        self,
        responses: Sequence[ModelResult],
        original_indices: Sequence[int],
    ) -> Evaluation:
        """
        Rank the filtered responses.

        Args:
            responses: Valid responses, in filtered order
            original_indices: original_indices[i] is the caller-facing index of responses[i]

        Returns:
            Evaluation whose rankings are best first, ties broken by original index
        """
        start = time.monotonic()
        if len(responses) != len(original_indices):
            raise ValueError("responses and original_indices must be the same length")

        if not responses:
            return Evaluation(
                best_index=-1,
                reasoning="No responses to evaluate",
                rankings=[],
                evaluation_time_ms=int((time.monotonic() - start) * 1000),
            )

        scored: List[tuple[Ranking, ModelResult]] = []
        for position, response in enumerate(responses):
            peers = [r for i, r in enumerate(responses) if i != position]
            score = self.score(response, peers)
            scored.append((
                Ranking(
                    original_index=original_indices[position],
                    score=score,
                    reasoning=describe_score(response, score),
                ),
                response,
            ))

        scored.sort(key=lambda pair: (-pair[0].score, pair[0].original_index))
        best_ranking, best_response = scored[0]

        logger.info(
            f"Heuristic evaluation: best index {best_ranking.original_index} "
            f"(score {best_ranking.score:.2f}) of {len(responses)}"
        )
        return Evaluation(
            best_index=best_ranking.original_index,
            reasoning=describe_winner(best_response, best_ranking.score),
            rankings=[ranking for ranking, _ in scored],
            evaluation_time_ms=int((time.monotonic() - start) * 1000),
        )
