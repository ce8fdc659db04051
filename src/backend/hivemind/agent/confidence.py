"""
Heuristic confidence and worker-parameter generation.

Confidence is a cheap proxy derived from the raw output and the sampling
parameters that produced it, not a calibrated probability. Both functions take
a ``random.Random`` instance so callers (and tests) control the noise source.
"""
from __future__ import annotations

import random
from typing import Optional

from hivemind.models.schemas import InvocationParams

CONFIDENCE_FLOOR = 0.1
CONFIDENCE_CEILING = 1.0
JITTER_WIDTH = 0.1  # total width, i.e. ±0.05


def estimate_confidence(
    output: str,
    params: InvocationParams,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Estimate confidence for a model output.

    Args:
        output: Raw model output
        params: Parameters the output was generated with
        rng: Random source for the jitter term (fresh instance if omitted)

    Returns:
        0.0 for empty output, otherwise a value in [0.1, 1.0]
    """
    if output == "":
        return 0.0

    rng = rng or random.Random()
    confidence = 0.5

    length = len(output.strip())
    if 50 < length < 500:
        confidence += 0.2
    elif length >= 500:
        confidence += 0.3

    # Lower temperature, higher confidence
    confidence += (1.0 - params.temperature) * 0.2

    confidence += (rng.random() - 0.5) * JITTER_WIDTH

    return min(max(confidence, CONFIDENCE_FLOOR), CONFIDENCE_CEILING)


def generate_worker_params(
    worker_id: str,
    rng: Optional[random.Random] = None,
) -> InvocationParams:
    """Randomised sampling parameters for worker diversity."""
    rng = rng or random.Random()
    return InvocationParams(
        temperature=0.3 + rng.random() * 0.9,
        top_k=rng.randint(20, 80),
        top_p=0.7 + rng.random() * 0.25,
        worker_id=worker_id,
    )
