"""Unit tests for master evaluation: index mapping, parsing and fallback."""

from unittest.mock import AsyncMock, Mock

import pytest

from conftest import make_result
from hivemind.agent.evaluator import (
    MASTER_EVAL_PARAMS,
    EvaluationOrchestrator,
    IndexMap,
    build_evaluation_prompt,
    parse_master_output,
    parse_rankings,
    positional_score,
)
from hivemind.models.schemas import InvocationParams, ModelResult


def _master_reply(text: str) -> ModelResult:
    return ModelResult(label="Worker-Master", output=text, params=MASTER_EVAL_PARAMS)


def _master_invoker(reply: ModelResult) -> Mock:
    invoker = Mock()
    invoker.invoke = AsyncMock(return_value=reply)
    return invoker


@pytest.fixture
def mixed_results():
    """Index 1 failed and index 3 is blank; 0, 2 and 4 are valid."""
    return [
        make_result(label="Agent-A", output="First answer."),
        make_result(label="Agent-B", error="Request failed: refused"),
        make_result(label="Agent-C", output="Second answer."),
        make_result(label="Agent-D", output="   "),
        make_result(label="Agent-E", output="Third answer."),
    ]


# ============================================================================
# Index mapping
# ============================================================================


class TestIndexMap:
    def test_of_valid_skips_errors_and_blank_output(self, mixed_results):
        index_map = IndexMap.of_valid(mixed_results)

        assert index_map.original_indices == [0, 2, 4]
        assert len(index_map) == 3

    def test_both_directions(self, mixed_results):
        index_map = IndexMap.of_valid(mixed_results)

        assert index_map.to_original(1) == 2
        assert index_map.to_filtered(4) == 2
        assert index_map.to_filtered(1) is None
        assert index_map.from_one_based(1) == 0
        assert index_map.from_one_based(3) == 4

    @pytest.mark.parametrize("position", [-1, 3, 99])
    def test_out_of_range(self, mixed_results, position):
        assert IndexMap.of_valid(mixed_results).to_original(position) is None

    def test_one_based_zero_is_invalid(self, mixed_results):
        assert IndexMap.of_valid(mixed_results).from_one_based(0) is None


# ============================================================================
# Scoring and parsing
# ============================================================================


class TestPositionalScore:
    def test_decay(self):
        scores = [positional_score(i, 3) for i in range(3)]
        assert scores == pytest.approx([1.0, 0.85, 0.7225])

    def test_floor(self):
        assert positional_score(30, 40) == 0.1

    def test_single_item(self):
        assert positional_score(0, 1) == 1.0


class TestParseRankings:
    def test_maps_to_original_indices(self):
        index_map = IndexMap([0, 2, 4])

        rankings = parse_rankings("3, 1, 2", index_map)

        assert [r.original_index for r in rankings] == [4, 0, 2]
        assert [r.score for r in rankings] == pytest.approx([1.0, 0.85, 0.7225])
        assert rankings[1].reasoning == "Ranked #2 by master evaluation"

    def test_invalid_tokens_keep_their_position(self):
        rankings = parse_rankings("2, x, 9, 1", IndexMap([0, 1]))

        assert [r.original_index for r in rankings] == [1, 0]
        assert rankings[1].score == pytest.approx(0.85 ** 3)

    def test_duplicates_keep_first_placement(self):
        rankings = parse_rankings("1, 1, 2", IndexMap([0, 1]))

        assert [r.original_index for r in rankings] == [0, 1]
        assert rankings[0].score == 1.0

    def test_brackets_and_quotes(self):
        rankings = parse_rankings('["2", "1"]', IndexMap([5, 7]))

        assert [r.original_index for r in rankings] == [7, 5]


class TestParseMasterOutput:
    def test_well_formed(self):
        text = "BEST: 2\nREASONING: Most complete answer.\nRANKINGS: 2,1,3"

        evaluation = parse_master_output(text, IndexMap([0, 2, 4]))

        assert evaluation.best_index == 2
        assert evaluation.reasoning == "Most complete answer."
        assert [r.original_index for r in evaluation.rankings] == [2, 0, 4]

    def test_ignores_surrounding_text_and_indentation(self):
        text = (
            "<think>comparing...</think>\n"
            "Here is my verdict:\n"
            "   BEST: [1]\n"
            "  REASONING: Clear and correct.  \n"
            "RANKINGS: [1, 2]\n"
            "Thanks!"
        )

        evaluation = parse_master_output(text, IndexMap([3, 6]))

        assert evaluation.best_index == 3
        assert evaluation.reasoning == "Clear and correct."
        assert [r.original_index for r in evaluation.rankings] == [3, 6]

    def test_unparseable_text_falls_back_to_first_valid(self):
        evaluation = parse_master_output("I liked them all.", IndexMap([1, 2]))

        assert evaluation.best_index == 1
        assert evaluation.reasoning == "Unable to parse evaluation"
        assert evaluation.rankings == []

    def test_out_of_range_best_falls_back(self):
        evaluation = parse_master_output("BEST: 7\nREASONING: r", IndexMap([4, 5]))

        assert evaluation.best_index == 4

    def test_missing_best_keeps_rankings_order(self):
        evaluation = parse_master_output("REASONING: r\nRANKINGS: 3,1,2", IndexMap([0, 2, 4]))

        assert evaluation.best_index == 4
        assert [r.original_index for r in evaluation.rankings] == [4, 0, 2]
        assert [r.score for r in evaluation.rankings] == pytest.approx([1.0, 0.85, 0.7225])

    def test_out_of_range_best_keeps_rankings_order(self):
        evaluation = parse_master_output("BEST: 9\nRANKINGS: 2,1", IndexMap([0, 1]))

        assert evaluation.best_index == 1
        assert [r.original_index for r in evaluation.rankings] == [1, 0]
        assert [r.score for r in evaluation.rankings] == pytest.approx([1.0, 0.85])

    def test_best_leads_rankings_when_they_disagree(self):
        text = "BEST: 2\nREASONING: r\nRANKINGS: 1,2,3"

        evaluation = parse_master_output(text, IndexMap([0, 1, 2]))

        assert evaluation.best_index == 1
        assert [r.original_index for r in evaluation.rankings] == [1, 0, 2]
        assert [r.score for r in evaluation.rankings] == pytest.approx([1.0, 0.85, 0.7225])

    def test_best_missing_from_rankings_is_inserted(self):
        text = "BEST: 3\nRANKINGS: 1,2"

        evaluation = parse_master_output(text, IndexMap([0, 1, 2]))

        assert [r.original_index for r in evaluation.rankings] == [2, 0, 1]

    def test_every_index_addresses_the_full_list(self, mixed_results):
        index_map = IndexMap.of_valid(mixed_results)

        evaluation = parse_master_output("BEST: 3\nRANKINGS: 3,2,1", index_map)

        assert mixed_results[evaluation.best_index].label == "Agent-E"
        for ranking in evaluation.rankings:
            assert mixed_results[ranking.original_index].is_valid


class TestEvaluationPrompt:
    def test_lists_numbered_responses(self):
        responses = [
            make_result(
                label="Response 1 (Agent-A)",
                output="alpha",
                confidence=0.75,
                params=InvocationParams(temperature=0.42),
            ),
            make_result(label="Response 2 (Agent-B)", output="beta"),
        ]

        prompt = build_evaluation_prompt("What is X?", responses)

        assert 'analyze these responses to the query: "What is X?"' in prompt
        assert "\nResponse 1 (Agent-A):\nalpha\n" in prompt
        assert "(Parameters: temp=0.42, confidence=0.75)" in prompt
        assert "\nResponse 2 (Agent-B):\nbeta\n" in prompt
        assert "Which response is best (number 1-2)" in prompt
        assert prompt.endswith('RANKINGS: [comma-separated list from best to worst, e.g., "2,1,3"]')


# ============================================================================
# Orchestration
# ============================================================================


class TestEvaluationOrchestrator:
    @pytest.mark.asyncio
    async def test_no_valid_responses(self):
        invoker = _master_invoker(_master_reply("BEST: 1"))
        results = [make_result(error="boom"), make_result(output="")]

        evaluation = await EvaluationOrchestrator(invoker).evaluate("q", results)

        assert evaluation.best_index == -1
        assert evaluation.reasoning == "No valid responses to evaluate"
        assert evaluation.rankings == []
        invoker.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_valid_response(self):
        invoker = _master_invoker(_master_reply("BEST: 1"))
        results = [make_result(label="Agent-A", error="boom"), make_result(label="Agent-B", output="ok")]

        evaluation = await EvaluationOrchestrator(invoker).evaluate("q", results)

        assert evaluation.best_index == 1
        assert evaluation.reasoning == "Agent-B provided the only successful response"
        assert len(evaluation.rankings) == 1
        assert evaluation.rankings[0].original_index == 1
        assert evaluation.rankings[0].score == 1.0
        invoker.invoke.assert_not_called()

    @pytest.mark.asyncio
    async def test_master_verdict_is_mapped_back(self, mixed_results):
        invoker = _master_invoker(_master_reply("BEST: 2\nREASONING: C wins\nRANKINGS: 2,3,1"))

        evaluation = await EvaluationOrchestrator(invoker).evaluate("q", mixed_results)

        assert evaluation.best_index == 2
        assert evaluation.reasoning == "C wins"
        assert [r.original_index for r in evaluation.rankings] == [2, 4, 0]
        assert evaluation.evaluation_time_ms >= 0

        prompt, params = invoker.invoke.call_args.args[:2]
        assert params == MASTER_EVAL_PARAMS
        assert "Response 2 (Agent-C):\nSecond answer." in prompt
        assert "Agent-B" not in prompt
        assert "(number 1-3)" in prompt

    @pytest.mark.asyncio
    async def test_input_results_are_not_relabelled(self, mixed_results):
        invoker = _master_invoker(_master_reply("BEST: 1"))

        await EvaluationOrchestrator(invoker).evaluate("q", mixed_results)

        assert mixed_results[0].label == "Agent-A"

    @pytest.mark.asyncio
    async def test_master_failure_uses_heuristic(self, balanced_params):
        strong = (
            "For example, caching helps because repeated reads are cheap. However, "
            "stale data is a risk while entries live. - Use short expiry times. "
            "- Invalidate on write. This keeps the system fast and correct for most workloads."
        )
        results = [
            make_result(label="Agent-A", output="ok", confidence=0.2, processing_time_ms=200),
            make_result(label="Agent-B", error="Request failed: refused"),
            make_result(
                label="Agent-C",
                output=strong,
                confidence=0.9,
                processing_time_ms=9000,
                params=balanced_params,
            ),
        ]
        invoker = _master_invoker(
            ModelResult(label="Worker-Master", error="API error (status 500): down")
        )

        evaluation = await EvaluationOrchestrator(invoker).evaluate("q", results)

        assert evaluation.best_index == 2
        assert evaluation.rankings[0].original_index == evaluation.best_index
        assert {r.original_index for r in evaluation.rankings} == {0, 2}
        assert evaluation.reasoning.startswith("Response 2 (Agent-C) provided the best response")
        scores = [r.score for r in evaluation.rankings]
        assert scores == sorted(scores, reverse=True)
