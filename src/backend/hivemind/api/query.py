"""
REST API for query submission.

The request blocks until every agent has answered (or failed) and the
evaluation is done, bounded by the shared query deadline.
"""
from __future__ import annotations

import logging
import time

from fastapi import APIRouter, HTTPException, Request

from hivemind.agent.orchestrator import Hivemind
from hivemind.models.schemas import QueryRequest, QueryResponse

logger = logging.getLogger(__name__)
router = APIRouter()


def get_hivemind(request: Request) -> Hivemind:
    return request.app.state.hivemind


def generate_query_id() -> str:
    return f"query_{time.time_ns()}"


@router.post("/query", response_model=QueryResponse, response_model_exclude_none=True)
async def submit_query(body: QueryRequest, request: Request):
    """
    Answer a query with every listed agent and return the ranked results.

    With no agents the master model answers alone and no
    ``masterEvaluation`` is returned.
    """
    if not body.query.strip():
        raise HTTPException(status_code=400, detail="Query cannot be empty")

    query_id = generate_query_id()
    logger.info(f"[{query_id}] {len(body.agents)} agents, query: {body.query[:80]}")

    results, evaluation = await get_hivemind(request).process_query(body.query, body.agents)

    return QueryResponse(
        results=results,
        query_id=query_id,
        master_evaluation=evaluation,
    )
