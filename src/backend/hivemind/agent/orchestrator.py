"""
Hivemind Orchestrator: the brain of the backend.

Controls the query pipeline:
  1. Fan the query out to every agent in parallel (Dispatcher)
  2. Judge the responses with the master model, or the heuristic
     fallback when that call fails (EvaluationOrchestrator)

With no agents, a single master call answers the query and no evaluation
is produced.
"""
from __future__ import annotations

import logging
import random
import time
from typing import List, Optional, Sequence, Tuple

from hivemind.agent.dispatcher import Dispatcher
from hivemind.agent.evaluator import EvaluationOrchestrator
from hivemind.config import settings
from hivemind.models.schemas import Agent, Evaluation, ModelResult
from hivemind.services.model_client import Deadline, ModelInvoker

logger = logging.getLogger(__name__)


class Hivemind:
    """
    Runs one query through dispatch and evaluation.

    Usage:
        hivemind = Hivemind(ModelInvoker())
        results, evaluation = await hivemind.process_query(query, agents)
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        timeout_seconds: Optional[float] = None,
        seed: Optional[int] = None,
    ):
        self.invoker = invoker
        self.dispatcher = Dispatcher(invoker)
        self.evaluator = EvaluationOrchestrator(invoker)
        self.timeout_seconds = timeout_seconds or settings.query_timeout_seconds
        self.seed = seed

    async def process_query(
        self,
        query: str,
        agents: Sequence[Agent],
    ) -> Tuple[List[ModelResult], Optional[Evaluation]]:
        """
        Answer a query with every agent and pick the best response.

        Args:
            query: Non-empty user query
            agents: Agents in the order the caller listed them

        Returns:
            (results, evaluation); results has one entry per agent in request
            order, evaluation is None only when no agents were given
        """
        deadline = Deadline(self.timeout_seconds)
        # Fresh random source per query; seeded only when reproducibility is wanted
        rng = random.Random(self.seed)
        start = time.monotonic()

        if not agents:
            results = await self.dispatcher.run_master_only(query, deadline, rng)
            logger.info(f"Master-only query answered in {int((time.monotonic() - start) * 1000)}ms")
            return results, None

        results = await self.dispatcher.dispatch(query, agents, deadline, rng)
        evaluation = await self.evaluator.evaluate(query, results, deadline, rng)

        logger.info(
            f"Query processed in {int((time.monotonic() - start) * 1000)}ms: "
            f"{len(results)} results, best index {evaluation.best_index}"
        )
        return results, evaluation

