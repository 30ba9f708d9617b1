import asyncio
from typing import Any

import pytest

from wallbounce.errors import ProviderError
from wallbounce.events import EventBus, EventType
from wallbounce.invoker import ScriptedModelInvoker
from wallbounce.orchestrator import (
    WallBounceOrchestrator,
    critique_order,
    estimate_quality,
    mean_pairwise_similarity,
    revise_order,
)
from wallbounce.schemas import CollaborationRequest, Phase

A, B, C = "model-a", "model-b", "model-c"

FILLER = (
    " Lorem ipsum dolor sit amet, consectetur adipiscing elit, sed do eiusmod tempor"
    " incididunt ut labore et dolore magna aliqua. Ut enim ad minim veniam, quis"
    " nostrud exercitation ullamco laboris nisi ut aliquip ex ea commodo consequat."
)
# Scores 50: two critical keywords, long enough to avoid the short-text reduction.
SEVERE_CRITIQUE = "This is wrong. The invalid path is the other concern." + FILLER
# Scores 0.
MILD_CRITIQUE = "Looks fine, a minor typo only."


def _request(models: list[str], **options: Any) -> CollaborationRequest:
    return CollaborationRequest.parse(
        {
            "query": "How do I reverse a list in Python?",
            "models": models,
            "sessionId": "s-1",
            "options": options,
        }
    )


@pytest.mark.asyncio
async def test_propose_falls_back_to_next_candidate() -> None:
    invoker = ScriptedModelInvoker(
        {
            A: ProviderError("unavailable", model=A),
            B: ["Use reversed() or slicing.", MILD_CRITIQUE],
        }
    )
    result = await WallBounceOrchestrator(invoker).run(_request([A, B]))

    propose = [r for r in result.rounds if r.phase is Phase.PROPOSE]
    assert [(r.model, r.success) for r in propose] == [(A, False), (B, True)]
    critique = [r for r in result.rounds if r.phase is Phase.CRITIQUE]
    assert [r.model for r in critique] == [B]
    assert result.metadata.models_attempted == [A, B]
    assert result.metadata.successful_models == [B]
    assert result.metadata.failed_models == [A]
    assert result.success is True
    assert result.final_response == "Use reversed() or slicing."


@pytest.mark.asyncio
async def test_max_passes_two_skips_revision() -> None:
    invoker = ScriptedModelInvoker({A: "Proposal", B: SEVERE_CRITIQUE})
    result = await WallBounceOrchestrator(invoker).run(_request([A, B], maxWallBounces=2))

    assert [r.phase for r in result.rounds] == [Phase.PROPOSE, Phase.CRITIQUE]
    assert result.critique_score is not None
    assert result.critique_score.requires_revision is True
    assert result.wall_bounce_count == 2
    assert result.revised is False
    assert result.final_response == "Proposal"


@pytest.mark.asyncio
async def test_severe_critique_triggers_revision() -> None:
    invoker = ScriptedModelInvoker({A: ["Proposal", "Revised answer"], B: SEVERE_CRITIQUE})
    result = await WallBounceOrchestrator(invoker).run(_request([A, B]))

    assert [(r.phase, r.model) for r in result.rounds] == [
        (Phase.PROPOSE, A),
        (Phase.CRITIQUE, B),
        (Phase.REVISE, A),
    ]
    assert [r.iteration for r in result.rounds] == [1, 2, 3]
    assert result.wall_bounce_count == 3
    assert result.revised is True
    assert result.final_response == "Revised answer"
    assert result.metadata.quality == "high"
    # The revise prompt embeds the proposal and the critique.
    revise_prompt = result.rounds[2].input
    assert "Proposal" in revise_prompt and "invalid path" in revise_prompt


@pytest.mark.asyncio
async def test_mild_critique_ends_after_two_passes() -> None:
    invoker = ScriptedModelInvoker({A: "Proposal", B: MILD_CRITIQUE})
    result = await WallBounceOrchestrator(invoker).run(_request([A, B]))

    assert result.wall_bounce_count == 2
    assert result.critique_score is not None
    assert result.critique_score.final_score == 0
    assert result.metadata.quality == "excellent"
    assert result.metadata.consensus == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_all_proposers_failing_is_reported() -> None:
    invoker = ScriptedModelInvoker({A: ProviderError("down"), B: ProviderError("down")})
    result = await WallBounceOrchestrator(invoker).run(_request([A, B]))

    assert result.success is False
    assert result.final_response == ""
    assert result.wall_bounce_count == 0
    assert result.error
    assert result.metadata.failed_models == [A, B]
    assert result.metadata.quality == "low"
    assert result.metadata.consensus == 0.0


@pytest.mark.asyncio
async def test_critique_failure_keeps_proposal() -> None:
    invoker = ScriptedModelInvoker(
        {A: ["Proposal", ProviderError("down")], B: ProviderError("down")}
    )
    result = await WallBounceOrchestrator(invoker).run(_request([A, B]))

    assert [(r.phase, r.model, r.success) for r in result.rounds] == [
        (Phase.PROPOSE, A, True),
        (Phase.CRITIQUE, B, False),
        (Phase.CRITIQUE, A, False),
    ]
    assert result.success is True
    assert result.final_response == "Proposal"
    assert result.wall_bounce_count == 1
    assert result.critique_score is None
    assert result.metadata.quality == "medium"


@pytest.mark.asyncio
async def test_revision_failure_falls_back_to_proposal() -> None:
    invoker = ScriptedModelInvoker(
        {
            A: ["Proposal", ProviderError("down")],
            B: [SEVERE_CRITIQUE, ProviderError("down")],
        }
    )
    result = await WallBounceOrchestrator(invoker).run(_request([A, B]))

    revise = [r for r in result.rounds if r.phase is Phase.REVISE]
    assert [r.model for r in revise] == [A, B]
    assert result.final_response == "Proposal"
    assert result.revised is False
    assert result.wall_bounce_count == 2


@pytest.mark.asyncio
async def test_timeout_counts_as_provider_failure() -> None:
    invoker = ScriptedModelInvoker(
        {A: "slow answer", B: ["fast answer", MILD_CRITIQUE]},
        delays={A: 1.0},
    )
    orchestrator = WallBounceOrchestrator(invoker, invocation_timeout=0.05, max_passes=1)
    result = await orchestrator.run(_request([A, B]))

    first = result.rounds[0]
    assert first.model == A
    assert first.success is False
    assert "timed out" in (first.error or "")
    assert result.final_response == "fast answer"


@pytest.mark.asyncio
async def test_request_timeout_overrides_default() -> None:
    invoker = ScriptedModelInvoker({A: "slow answer", B: "fast answer"}, delays={A: 1.0})
    orchestrator = WallBounceOrchestrator(invoker, invocation_timeout=30, max_passes=1)
    result = await orchestrator.run(_request([A, B], timeoutSeconds=0.05))

    assert result.rounds[0].success is False
    assert result.final_response == "fast answer"


@pytest.mark.asyncio
async def test_explicit_critique_model_is_tried_first() -> None:
    invoker = ScriptedModelInvoker({A: "Proposal", B: MILD_CRITIQUE, C: MILD_CRITIQUE})
    result = await WallBounceOrchestrator(invoker).run(_request([A, B], critiqueModel=C))

    critique = [r for r in result.rounds if r.phase is Phase.CRITIQUE]
    assert [r.model for r in critique] == [C]


@pytest.mark.asyncio
@pytest.mark.parametrize("max_passes", [1, 2, 3])
async def test_wall_bounce_count_never_exceeds_max_passes(max_passes: int) -> None:
    invoker = ScriptedModelInvoker({A: "Proposal", B: SEVERE_CRITIQUE})
    orchestrator = WallBounceOrchestrator(invoker, max_passes=max_passes)
    result = await orchestrator.run(_request([A, B]))

    assert result.wall_bounce_count <= max_passes
    assert result.wall_bounce_count == max_passes


@pytest.mark.asyncio
async def test_min_passes_forces_revision() -> None:
    invoker = ScriptedModelInvoker({A: ["Proposal", "Revised"], B: MILD_CRITIQUE})
    result = await WallBounceOrchestrator(invoker).run(_request([A, B], minWallBounces=3))

    assert result.critique_score is not None
    assert result.critique_score.requires_revision is False
    assert result.revised is True
    assert result.wall_bounce_count == 3


@pytest.mark.asyncio
async def test_enhanced_fan_out_abandons_stragglers() -> None:
    invoker = ScriptedModelInvoker(
        {
            A: "use reversed on the list",
            B: ["use slicing on the list", MILD_CRITIQUE],
            C: "never answers in time",
        },
        delays={C: 5.0},
    )
    orchestrator = WallBounceOrchestrator(invoker, fan_out_min_successes=2)
    result = await orchestrator.run(_request([A, B, C], enhanced=True))

    meta = result.metadata
    assert meta.abandoned_models == [C]
    assert C in meta.models_attempted
    assert C not in meta.successful_models
    assert result.final_response == "use reversed on the list"
    propose = [r for r in result.rounds if r.phase is Phase.PROPOSE]
    assert [r.model for r in propose] == [A, B]
    # Consensus comes from the fan-out responses.
    assert meta.consensus == pytest.approx(
        mean_pairwise_similarity(["use reversed on the list", "use slicing on the list"])
    )


@pytest.mark.asyncio
async def test_fan_out_settles_at_phase_deadline() -> None:
    invoker = ScriptedModelInvoker(
        {A: "only answer", B: "late", C: "late"}, delays={B: 5.0, C: 5.0}
    )
    orchestrator = WallBounceOrchestrator(
        invoker, fan_out_min_successes=2, phase_timeout=0.2, max_passes=1
    )
    result = await orchestrator.run(_request([A, B, C], enhanced=True))

    assert result.success is True
    assert result.final_response == "only answer"
    assert sorted(result.metadata.abandoned_models) == [B, C]


@pytest.mark.asyncio
async def test_events_are_published() -> None:
    bus = EventBus()
    queue = bus.subscribe()
    invoker = ScriptedModelInvoker({A: "Proposal", B: MILD_CRITIQUE})
    await WallBounceOrchestrator(invoker, events=bus).run(_request([A, B]))

    types = []
    while not queue.empty():
        event = queue.get_nowait()
        assert event.session_id == "s-1"
        types.append(event.type)
    assert types[0] is EventType.COLLABORATION_STARTED
    assert EventType.REVISION_DECIDED in types
    assert types[-1] is EventType.COLLABORATION_COMPLETED


@pytest.mark.asyncio
async def test_totals_accumulate_over_rounds() -> None:
    invoker = ScriptedModelInvoker({A: "Proposal", B: MILD_CRITIQUE})
    result = await WallBounceOrchestrator(invoker).run(_request([A, B]))

    assert result.metadata.total_tokens == sum(r.usage.total_tokens for r in result.rounds)
    assert result.metadata.total_cost == sum(r.cost for r in result.rounds)
    assert result.metadata.total_cost > 0


def test_critique_order_rotates_after_proposer() -> None:
    assert critique_order([A, B, C], B) == [C, A, B]
    assert critique_order([A, B, C], A, explicit=C) == [C, B, A]
    assert critique_order([A], A) == [A]


def test_critique_order_defers_models_that_already_failed() -> None:
    assert critique_order([A, B], B, failed=[A]) == [B, A]
    assert critique_order([A, B, C], B, failed=[C]) == [A, B, C]
    assert critique_order([A, B, C], A, explicit=C, failed=[C]) == [C, B, A]


def test_revise_order_starts_with_proposer() -> None:
    assert revise_order([A, B, C], B) == [B, A, C]


def test_quality_ladder() -> None:
    assert estimate_quality(success=False, critique_score=None, revised=False) == "low"
    assert estimate_quality(success=True, critique_score=None, revised=False) == "medium"


def test_invalid_max_passes_rejected() -> None:
    with pytest.raises(ValueError):
        WallBounceOrchestrator(ScriptedModelInvoker(), max_passes=0)


@pytest.mark.asyncio
async def test_cancelled_run_propagates() -> None:
    invoker = ScriptedModelInvoker({A: "slow"}, delays={A: 5.0})
    task = asyncio.create_task(WallBounceOrchestrator(invoker).run(_request([A])))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
