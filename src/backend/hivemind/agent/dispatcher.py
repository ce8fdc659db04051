"""
Dispatcher: concurrent fan-out of one model call per agent.

Every agent gets its own asyncio task, all bound by one shared Deadline.
Results land in a SlotArena: one pre-allocated slot per agent index, with each
slot handed to exactly one task. The returned list therefore has one entry per
agent in request order, whatever order the calls finish in.
"""
from __future__ import annotations

import asyncio
import logging
import random
from typing import List, Optional, Sequence

from hivemind.agent.confidence import generate_worker_params
from hivemind.models.schemas import (
    Agent,
    InvocationParams,
    ModelResult,
    ResponseLengthMode,
)
from hivemind.services.model_client import Deadline, ModelInvoker

logger = logging.getLogger(__name__)

MASTER_LABEL = "Hivemind Master"
DEFAULT_MASTER_PARAMS = InvocationParams(
    temperature=0.7,
    top_k=40,
    top_p=0.8,
    worker_id="Master",
)

RESPONSE_LENGTH_INSTRUCTIONS = {
    ResponseLengthMode.BRIEF: (
        "Response Length: Provide a brief response (1-2 sentences) "
        "focusing only on the key points."
    ),
    ResponseLengthMode.DETAILED: (
        "Response Length: Provide a detailed response (1-2 paragraphs) "
        "with explanation and context."
    ),
    ResponseLengthMode.COMPREHENSIVE: (
        "Response Length: Provide a comprehensive response with full analysis, "
        "examples, and thorough explanation."
    ),
    ResponseLengthMode.UNLIMITED: (
        "Response Length: Provide a response of appropriate length "
        "for the query complexity."
    ),
}


# ──────────────────────────────────────────────
# Slot arena
# ──────────────────────────────────────────────

class Slot:
    """Write-once cell owned by a single dispatcher task."""

    def __init__(self, index: int):
        self.index = index
        self._result: Optional[ModelResult] = None

    @property
    def filled(self) -> bool:
        return self._result is not None

    def fill(self, result: ModelResult) -> None:
        if self._result is not None:
            raise RuntimeError(f"Slot {self.index} already filled")
        self._result = result

    @property
    def result(self) -> ModelResult:
        if self._result is None:
            raise RuntimeError(f"Slot {self.index} was never filled")
        return self._result


class SlotArena:
    """
    N pre-allocated slots, handed out one-to-one.

    Each slot can be claimed once; a claimed slot is the only place its task
    may write. No lock is needed because no two owners share a slot.
    """

    def __init__(self, size: int):
        self._slots = [Slot(i) for i in range(size)]
        self._claimed = [False] * size

    def __len__(self) -> int:
        return len(self._slots)

    def claim(self, index: int) -> Slot:
        if self._claimed[index]:
            raise RuntimeError(f"Slot {index} already has an owner")
        self._claimed[index] = True
        return self._slots[index]

    def collect(self) -> List[ModelResult]:
        return [slot.result for slot in self._slots]


# ──────────────────────────────────────────────
# Prompt building
# ──────────────────────────────────────────────

def response_length_instruction(mode: ResponseLengthMode) -> str:
    return RESPONSE_LENGTH_INSTRUCTIONS.get(
        mode, RESPONSE_LENGTH_INSTRUCTIONS[ResponseLengthMode.UNLIMITED]
    )


def build_worker_prompt(query: str, agent: Agent) -> str:
    """Role line (if any), length instruction, then the query itself."""
    parts = []
    if agent.specialization and agent.specialization.strip():
        parts.append(f"Role: {agent.specialization}")
    parts.append(response_length_instruction(agent.response_length))
    parts.append(f"Query: {query}")
    return "\n\n".join(parts)


def resolve_agent_params(agent: Agent, rng: random.Random) -> InvocationParams:
    """Agent's own params with worker_id forced to the agent name."""
    if agent.params is None:
        return generate_worker_params(agent.name, rng)
    return agent.params.model_copy(update={"worker_id": agent.name})


# ──────────────────────────────────────────────
# Dispatcher
# ──────────────────────────────────────────────

class Dispatcher:
    """Runs one ModelInvoker call per agent under a shared deadline."""

    def __init__(self, invoker: ModelInvoker):
        self.invoker = invoker

    async def run_master_only(
        self,
        query: str,
        deadline: Deadline,
        rng: Optional[random.Random] = None,
    ) -> List[ModelResult]:
        """No agents: one call with the default master parameters."""
        result = await self.invoker.invoke(query, DEFAULT_MASTER_PARAMS, deadline, rng)
        return [result.model_copy(update={"label": MASTER_LABEL})]

    async def dispatch(
        self,
        query: str,
        agents: Sequence[Agent],
        deadline: Deadline,
        rng: Optional[random.Random] = None,
    ) -> List[ModelResult]:
        """
        Fan out one call per agent and wait for all of them.

        Args:
            query: The user query (without agent framing)
            agents: Agents in request order
            deadline: Shared deadline for every call
            rng: Parent random source; each agent gets a child seeded from it

        Returns:
            One ModelResult per agent, in the same order as ``agents``
        """
        if not agents:
            return await self.run_master_only(query, deadline, rng)

        rng = rng or random.Random()
        arena = SlotArena(len(agents))

        # Child random sources are drawn in request order so seeded runs
        # don't depend on completion order.
        tasks = [
            self._run_agent(
                slot=arena.claim(index),
                query=query,
                agent=agent,
                deadline=deadline,
                rng=random.Random(rng.getrandbits(64)),
            )
            for index, agent in enumerate(agents)
        ]
        await asyncio.gather(*tasks)

        results = arena.collect()
        failed = sum(1 for r in results if r.error)
        logger.info(f"Dispatched {len(agents)} agents: {len(agents) - failed} ok, {failed} failed")
        return results

    async def _run_agent(
        self,
        slot: Slot,
        query: str,
        agent: Agent,
        deadline: Deadline,
        rng: random.Random,
    ) -> None:
        label = f"Agent-{agent.name}"
        params = resolve_agent_params(agent, rng)
        prompt = build_worker_prompt(query, agent)

        try:
            result = await self.invoker.invoke(prompt, params, deadline, rng)
        except Exception as e:
            logger.error(f"{label} raised unexpectedly: {e}")
            result = ModelResult(label=label, error=f"Worker failed: {e}", params=params)

        slot.fill(result.model_copy(update={"label": label}))
