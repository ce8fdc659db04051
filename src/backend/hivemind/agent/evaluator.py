"""
Master evaluation: asks the model to judge the agent responses.

Flow:
  1. Filter out failed / blank results, remembering where each survivor sat
     in the caller-facing list (IndexMap).
  2. Short-circuit when zero or one response survived.
  3. Ask the master model for a three-line verdict:
         BEST: <n>
         REASONING: <text>
         RANKINGS: <n>,<n>,...
  4. Parse it line by line, each field degrading on its own, and map every
     1-based filtered position back to an original index.

If the master call fails, the HeuristicEvaluator ranks the filtered set instead.
"""
from __future__ import annotations

import logging
import random
import re
import time
from typing import Dict, List, Optional, Sequence

from hivemind.agent.heuristics import HeuristicEvaluator
from hivemind.models.schemas import Evaluation, InvocationParams, ModelResult, Ranking
from hivemind.services.model_client import Deadline, ModelInvoker

logger = logging.getLogger(__name__)

MASTER_EVAL_PARAMS = InvocationParams(
    temperature=0.1,
    top_k=30,
    top_p=0.8,
    worker_id="Master",
)

POSITIONAL_DECAY = 0.85
MIN_POSITIONAL_SCORE = 0.1

EVALUATION_PROMPT = """As a master AI evaluator, analyze these responses to the query: "{query}"

Responses:
{responses}
Please evaluate these responses and provide:
1. Which response is best (number 1-{count})
2. Brief reasoning for your choice
3. Rank all responses from best to worst

Format your response as:
BEST: [number]
REASONING: [brief explanation]
RANKINGS: [comma-separated list from best to worst, e.g., "2,1,3"]"""

_BEST_RE = re.compile(r"^BEST:\s*\[?\s*([+-]?\d+)")
_RANK_TOKEN_RE = re.compile(r"^[\[\"'#\s]*([+-]?\d+)")


# ──────────────────────────────────────────────
# Index mapping
# ──────────────────────────────────────────────

class IndexMap:
    """
    Bidirectional lookup between filtered positions and original indices.

    Built once per evaluation from the caller-facing result list. Filtered
    positions are 0-based here; the prompt shows them 1-based.
    """

    def __init__(self, original_indices: Sequence[int]):
        self._to_original: List[int] = list(original_indices)
        self._to_filtered: Dict[int, int] = {
            original: position for position, original in enumerate(self._to_original)
        }

    @classmethod
    def of_valid(cls, results: Sequence[ModelResult]) -> "IndexMap":
        return cls([i for i, r in enumerate(results) if r.is_valid])

    def __len__(self) -> int:
        return len(self._to_original)

    @property
    def original_indices(self) -> List[int]:
        return list(self._to_original)

    def to_original(self, position: int) -> Optional[int]:
        """Original index for a 0-based filtered position, None if out of range."""
        if 0 <= position < len(self._to_original):
            return self._to_original[position]
        return None

    def to_filtered(self, original_index: int) -> Optional[int]:
        return self._to_filtered.get(original_index)

    def from_one_based(self, number: int) -> Optional[int]:
        return self.to_original(number - 1)


# ──────────────────────────────────────────────
# Prompt + parsing
# ──────────────────────────────────────────────

def positional_score(position: int, total: int) -> float:
    """Exponential decay by rank position: 1.0, 0.85, 0.7225, ... floored at 0.1."""
    if total <= 1:
        return 1.0
    return max(MIN_POSITIONAL_SCORE, POSITIONAL_DECAY ** position)


def build_evaluation_prompt(query: str, responses: Sequence[ModelResult]) -> str:
    """Responses must already carry their "Response k (...)" labels."""
    sections = []
    for response in responses:
        section = f"\n{response.label}:\n{response.output}\n"
        if response.params is not None:
            section += (
                f"(Parameters: temp={response.params.temperature:.2f}, "
                f"confidence={(response.confidence or 0.0):.2f})\n"
            )
        sections.append(section)

    return EVALUATION_PROMPT.format(
        query=query,
        responses="".join(sections),
        count=len(responses),
    )


def parse_rankings(text: str, index_map: IndexMap) -> List[Ranking]:
    """
    Parse a comma separated list of 1-based filtered positions.

    Tokens that don't start with a number, or that fall outside the filtered
    list, are skipped. Each token keeps its position in the raw list for
    scoring. Repeated entries keep their first (best) placement.
    """
    tokens = text.split(",")
    rankings: List[Ranking] = []
    seen = set()

    for position, token in enumerate(tokens):
        match = _RANK_TOKEN_RE.match(token.strip())
        if not match:
            continue
        original = index_map.from_one_based(int(match.group(1)))
        if original is None or original in seen:
            continue
        seen.add(original)
        rankings.append(Ranking(
            original_index=original,
            score=positional_score(position, len(tokens)),
            reasoning=f"Ranked #{position + 1} by master evaluation",
        ))

    return rankings


def parse_master_output(text: str, index_map: IndexMap) -> Evaluation:
    """
    Tolerant line-oriented parse of the master verdict.

    Missing or invalid BEST defaults to the head of RANKINGS, or to the first
    valid response when RANKINGS is empty too; missing REASONING and RANKINGS
    fall back to a placeholder and an empty list.
    """
    best_index: Optional[int] = None
    reasoning = "Unable to parse evaluation"
    rankings: List[Ranking] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if line.startswith("BEST:"):
            match = _BEST_RE.match(line)
            if match:
                candidate = index_map.from_one_based(int(match.group(1)))
                if candidate is not None:
                    best_index = candidate
        elif line.startswith("REASONING:"):
            reasoning = line[len("REASONING:"):].strip()
        elif line.startswith("RANKINGS:"):
            rankings = parse_rankings(line[len("RANKINGS:"):].strip(), index_map)

    if best_index is None:
        # RANKINGS stands on its own when BEST is unusable
        if rankings:
            best_index = rankings[0].original_index
        else:
            best_index = index_map.to_original(0)

    return Evaluation(
        best_index=best_index,
        reasoning=reasoning,
        rankings=_promote_best(rankings, best_index),
    )


def _promote_best(rankings: List[Ranking], best_index: int) -> List[Ranking]:
    """
    Keep BEST and RANKINGS consistent: the best response always leads.

    When the model's RANKINGS disagrees with its BEST line, the BEST entry is
    moved to the front and positional scores are reassigned.
    """
    if not rankings or rankings[0].original_index == best_index:
        return rankings

    ordered = [r for r in rankings if r.original_index == best_index]
    if not ordered:
        ordered = [Ranking(original_index=best_index, score=1.0, reasoning="")]
    ordered += [r for r in rankings if r.original_index != best_index]

    total = len(ordered)
    return [
        Ranking(
            original_index=r.original_index,
            score=positional_score(position, total),
            reasoning=f"Ranked #{position + 1} by master evaluation",
        )
        for position, r in enumerate(ordered)
    ]


# ──────────────────────────────────────────────
# Orchestrator
# ──────────────────────────────────────────────

class EvaluationOrchestrator:
    """
    Selects the best agent response, via the master model when possible.

    Usage:
        evaluator = EvaluationOrchestrator(invoker)
        evaluation = await evaluator.evaluate(query, results, deadline)
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        fallback: Optional[HeuristicEvaluator] = None,
    ):
        self.invoker = invoker
        self.fallback = fallback or HeuristicEvaluator()

    async def evaluate(
        self,
        query: str,
        results: Sequence[ModelResult],
        deadline: Optional[Deadline] = None,
        rng: Optional[random.Random] = None,
    ) -> Evaluation:
        """
        Evaluate the dispatcher's results.

        Args:
            query: The original user query
            results: Caller-facing results, in agent order
            deadline: Shared query deadline, also bounds the master call
            rng: Random source for the master call's confidence jitter

        Returns:
            Evaluation whose indices all address ``results``
        """
        start = time.monotonic()

        index_map = IndexMap.of_valid(results)
        valid = [
            results[original].model_copy(
                update={"label": f"Response {position + 1} ({results[original].label})"}
            )
            for position, original in enumerate(index_map.original_indices)
        ]

        if not valid:
            return Evaluation(
                best_index=-1,
                reasoning="No valid responses to evaluate",
                rankings=[],
                evaluation_time_ms=_elapsed_ms(start),
            )

        if len(valid) == 1:
            only = index_map.to_original(0)
            return Evaluation(
                best_index=only,
                reasoning=f"{results[only].label} provided the only successful response",
                rankings=[Ranking(original_index=only, score=1.0, reasoning="Only successful response")],
                evaluation_time_ms=_elapsed_ms(start),
            )

        prompt = build_evaluation_prompt(query, valid)
        verdict = await self.invoker.invoke(prompt, MASTER_EVAL_PARAMS, deadline, rng)

        if verdict.error:
            logger.warning(f"Master evaluation failed, using heuristic fallback: {verdict.error[:200]}")
            evaluation = self.fallback.evaluate(valid, index_map.original_indices)
        else:
            evaluation = parse_master_output(verdict.output, index_map)
            logger.info(
                f"Master evaluation: best index {evaluation.best_index}, "
                f"{len(evaluation.rankings)} ranked of {len(valid)}"
            )

        return evaluation.model_copy(update={"evaluation_time_ms": _elapsed_ms(start)})


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
