"""LangGraph-based wall-bounce orchestrator.

The run is an explicit state machine:

    propose -> critique -> (gate) -> revise -> finalize
                  \\________________________/

- Each phase walks an ordered candidate list and falls back on failure.
- Every attempt is recorded as a CollaborationRound, failures included.
- The revise phase only runs when the critique is severe enough and the pass
  budget allows it.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import operator
import time
from collections.abc import Sequence
from decimal import Decimal
from typing import Annotated, Any, TypedDict

from langgraph.graph import END, StateGraph

from .events import EventBus, EventType
from .invoker import InvocationOptions, InvocationResult, ModelInvoker, invoke_guarded
from .model_config import order_candidates
from .prompts import build_critique_prompt, build_propose_prompt, build_revise_prompt
from .schemas import (
    CollaborationMetadata,
    CollaborationRequest,
    CollaborationResult,
    CollaborationRound,
    Phase,
    Quality,
)
from .severity import CritiqueScore, CritiqueSeverityAnalyzer, Severity

logger = logging.getLogger(__name__)


class WallBounceState(TypedDict, total=False):
    request: CollaborationRequest
    context: str
    candidates: list[str]
    max_passes: int
    min_passes: int

    rounds: Annotated[list[CollaborationRound], operator.add]
    passes: int

    proposal: str
    proposer: str
    fan_out: dict[str, Any]

    critique: str
    critique_score: CritiqueScore
    should_revise: bool

    revision: str
    final_response: str
    revised: bool
    error: str


def critique_order(
    candidates: Sequence[str],
    proposer: str,
    explicit: str | None = None,
    failed: Sequence[str] = (),
) -> list[str]:
    """Candidates after the proposer first, then the proposer.

    Models that already failed this run go last; an explicit model leads.
    """
    if proposer in candidates:
        idx = candidates.index(proposer)
        rotated = [*candidates[idx + 1 :], *candidates[:idx]]
    else:
        rotated = list(candidates)
    ordered = [
        *(m for m in rotated if m not in failed),
        proposer,
        *(m for m in rotated if m in failed),
    ]
    if explicit:
        ordered = [explicit, *(m for m in ordered if m != explicit)]
    return ordered


def revise_order(candidates: Sequence[str], proposer: str) -> list[str]:
    return [proposer, *(m for m in candidates if m != proposer)]


def text_similarity(a: str, b: str) -> float:
    """Jaccard similarity of lower-cased word sets, 0..1."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union) if union else 0.0


def mean_pairwise_similarity(texts: Sequence[str]) -> float:
    pairs = list(itertools.combinations(texts, 2))
    if not pairs:
        return 1.0
    return sum(text_similarity(a, b) for a, b in pairs) / len(pairs)


def estimate_quality(
    *, success: bool, critique_score: CritiqueScore | None, revised: bool
) -> Quality:
    if not success:
        return "low"
    if critique_score is None:
        return "medium"
    if critique_score.severity is Severity.LOW:
        return "excellent"
    if revised:
        return "high"
    return {
        Severity.MEDIUM: "high",
        Severity.HIGH: "medium",
        Severity.CRITICAL: "low",
    }[critique_score.severity]


def estimate_consensus(
    *, success: bool, fan_out_responses: Sequence[str], critique_score: CritiqueScore | None
) -> float:
    if not success:
        return 0.0
    if len(fan_out_responses) >= 2:
        return mean_pairwise_similarity(fan_out_responses)
    if critique_score is not None:
        return 1.0 - critique_score.final_score / 100
    return 0.5


def _unique(items: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(items))


class WallBounceOrchestrator:
    """Drives propose -> critique -> (gated) revise over interchangeable model backends."""

    def __init__(
        self,
        invoker: ModelInvoker,
        analyzer: CritiqueSeverityAnalyzer | None = None,
        *,
        max_passes: int = 3,
        min_passes: int = 2,
        fan_out_min_successes: int = 2,
        invocation_timeout: float = 60.0,
        phase_timeout: float = 120.0,
        invocation_options: InvocationOptions | None = None,
        events: EventBus | None = None,
    ) -> None:
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1")
        self.invoker = invoker
        self.analyzer = analyzer or CritiqueSeverityAnalyzer()
        self.max_passes = max_passes
        self.min_passes = min_passes
        self.fan_out_min_successes = fan_out_min_successes
        self.invocation_timeout = invocation_timeout
        self.phase_timeout = phase_timeout
        self.invocation_options = invocation_options or InvocationOptions()
        self.events = events
        self._graph = self._build_graph()

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def _build_graph(self) -> Any:
        graph = StateGraph(WallBounceState)
        graph.add_node("propose", self._node_propose)
        graph.add_node("critique", self._node_critique)
        graph.add_node("revise", self._node_revise)
        graph.add_node("finalize", self._node_finalize)

        graph.set_entry_point("propose")
        graph.add_conditional_edges(
            "propose",
            self._route_after_propose,
            {"critique": "critique", "finalize": "finalize"},
        )
        graph.add_conditional_edges(
            "critique",
            self._route_after_critique,
            {"revise": "revise", "finalize": "finalize"},
        )
        graph.add_edge("revise", "finalize")
        graph.add_edge("finalize", END)
        return graph.compile()

    @staticmethod
    def _route_after_propose(state: WallBounceState) -> str:
        if state.get("proposal") and state["max_passes"] >= 2:
            return "critique"
        return "finalize"

    @staticmethod
    def _route_after_critique(state: WallBounceState) -> str:
        return "revise" if state.get("should_revise") else "finalize"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, request: CollaborationRequest, context: str = "") -> CollaborationResult:
        start = time.perf_counter()
        options = request.options
        max_passes = options.max_wall_bounces or max(
            self.max_passes, options.min_wall_bounces or 1
        )
        min_passes = min(options.min_wall_bounces or self.min_passes, max_passes)
        candidates = order_candidates(request.models, request.task_type)

        logger.info(
            "Starting wall-bounce for session %s (candidates=%s, passes=%d..%d)",
            request.session_id,
            candidates,
            min_passes,
            max_passes,
        )
        await self._emit(
            EventType.COLLABORATION_STARTED,
            request,
            message=f"Collaboration started with {len(candidates)} candidate(s)",
            data={"candidates": candidates, "maxPasses": max_passes},
        )

        initial: WallBounceState = {
            "request": request,
            "context": context,
            "candidates": candidates,
            "max_passes": max_passes,
            "min_passes": min_passes,
            "rounds": [],
            "passes": 0,
        }
        final_state: WallBounceState = await self._graph.ainvoke(initial)

        result = self._build_result(final_state, time.perf_counter() - start)
        await self._emit(
            EventType.COLLABORATION_COMPLETED if result.success else EventType.COLLABORATION_FAILED,
            request,
            message=result.error or f"Completed after {result.wall_bounce_count} pass(es)",
            data={
                "wallBounceCount": result.wall_bounce_count,
                "quality": result.metadata.quality,
            },
            duration_ms=round(result.metadata.processing_time * 1000),
        )
        return result

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def _node_propose(self, state: WallBounceState) -> WallBounceState:
        request = state["request"]
        candidates = state["candidates"]
        prompt = build_propose_prompt(
            request.query,
            request.options,
            task_type=request.task_type,
            context=state.get("context", ""),
        )
        await self._emit(EventType.PHASE_STARTED, request, phase=Phase.PROPOSE)

        if request.options.enhanced and len(candidates) > self.fan_out_min_successes:
            update = await self._fan_out_propose(request, candidates, prompt)
        else:
            rounds, winner = await self._invoke_in_order(
                request, Phase.PROPOSE, candidates, prompt, iteration=1
            )
            update = {"rounds": rounds}
            if winner is not None:
                update.update(proposal=winner.content, proposer=winner.model)

        if update.get("proposal"):
            update["passes"] = 1
        else:
            update["error"] = "All candidate models failed during propose"
        await self._emit(
            EventType.PHASE_COMPLETED,
            request,
            phase=Phase.PROPOSE,
            model=update.get("proposer"),
            data={"success": bool(update.get("proposal"))},
        )
        return update

    async def _node_critique(self, state: WallBounceState) -> WallBounceState:
        request = state["request"]
        failed = [r.model for r in state.get("rounds", []) if not r.success]
        order = critique_order(
            state["candidates"],
            state["proposer"],
            request.options.critique_model,
            failed=failed,
        )
        prompt = build_critique_prompt(request.query, state["proposal"])
        await self._emit(EventType.PHASE_STARTED, request, phase=Phase.CRITIQUE)

        rounds, winner = await self._invoke_in_order(
            request, Phase.CRITIQUE, order, prompt, iteration=2
        )
        update: WallBounceState = {"rounds": rounds}
        if winner is None:
            logger.warning("Critique failed on all candidates; keeping the proposal")
            update["should_revise"] = False
        else:
            passes = state["passes"] + 1
            score = self.analyzer.analyze(winner.content)
            below_minimum = passes < state["min_passes"]
            should_revise = (score.requires_revision or below_minimum) and passes < state[
                "max_passes"
            ]
            update.update(
                critique=winner.content,
                critique_score=score,
                passes=passes,
                should_revise=should_revise,
            )
            logger.info(
                "Critique by %s scored %d (%s); revise=%s",
                winner.model,
                score.final_score,
                score.severity.value,
                should_revise,
            )
            await self._emit(
                EventType.REVISION_DECIDED,
                request,
                phase=Phase.CRITIQUE,
                model=winner.model,
                message=(
                    f"Severity score: {score.final_score}, Level: {score.severity.value}"
                ),
                data={"shouldRevise": should_revise, "critique": score.to_dict()},
            )
        await self._emit(
            EventType.PHASE_COMPLETED,
            request,
            phase=Phase.CRITIQUE,
            model=winner.model if winner else None,
            data={"success": winner is not None},
        )
        return update

    async def _node_revise(self, state: WallBounceState) -> WallBounceState:
        request = state["request"]
        order = revise_order(state["candidates"], state["proposer"])
        prompt = build_revise_prompt(request.query, state["proposal"], state["critique"])
        await self._emit(EventType.PHASE_STARTED, request, phase=Phase.REVISE)

        rounds, winner = await self._invoke_in_order(
            request, Phase.REVISE, order, prompt, iteration=3
        )
        update: WallBounceState = {"rounds": rounds}
        if winner is not None:
            update.update(revision=winner.content, passes=state["passes"] + 1)
        else:
            logger.warning("Revision failed on all candidates; keeping the proposal")
        await self._emit(
            EventType.PHASE_COMPLETED,
            request,
            phase=Phase.REVISE,
            model=winner.model if winner else None,
            data={"success": winner is not None},
        )
        return update

    async def _node_finalize(self, state: WallBounceState) -> WallBounceState:
        if state.get("revision"):
            return {"final_response": state["revision"], "revised": True}
        return {"final_response": state.get("proposal", ""), "revised": False}

    # ------------------------------------------------------------------
    # Invocation helpers
    # ------------------------------------------------------------------

    def _call_timeout(self, request: CollaborationRequest) -> float:
        return request.options.timeout_seconds or self.invocation_timeout

    async def _invoke_in_order(
        self,
        request: CollaborationRequest,
        phase: Phase,
        models: Sequence[str],
        prompt: str,
        *,
        iteration: int,
    ) -> tuple[list[CollaborationRound], InvocationResult | None]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.phase_timeout
        rounds: list[CollaborationRound] = []
        for model in models:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning("Phase %s deadline reached before trying %s", phase.value, model)
                break
            timeout = min(self._call_timeout(request), remaining)
            result = await invoke_guarded(
                self.invoker, model, prompt, self.invocation_options, timeout=timeout
            )
            rounds.append(self._to_round(phase, prompt, result, iteration))
            await self._emit_invocation(request, phase, result)
            if result.success:
                return rounds, result
        return rounds, None

    async def _fan_out_propose(
        self, request: CollaborationRequest, candidates: Sequence[str], prompt: str
    ) -> WallBounceState:
        """Issue Propose to every candidate; settle on the minimum successes or the deadline."""
        timeout = self._call_timeout(request)
        tasks: dict[asyncio.Task[InvocationResult], str] = {
            asyncio.create_task(
                invoke_guarded(self.invoker, model, prompt, self.invocation_options, timeout=timeout)
            ): model
            for model in candidates
        }
        results: dict[str, InvocationResult] = {}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.phase_timeout
        pending: set[asyncio.Task[InvocationResult]] = set(tasks)
        successes = 0
        try:
            while pending and successes < self.fan_out_min_successes:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    result = task.result()
                    results[tasks[task]] = result
                    if result.success:
                        successes += 1
                    await self._emit_invocation(request, Phase.PROPOSE, result)
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        abandoned = [tasks[task] for task in pending]
        ordered = [results[m] for m in candidates if m in results]
        rounds = [self._to_round(Phase.PROPOSE, prompt, r, 1) for r in ordered]
        successful = [r.model for r in ordered if r.success]
        failed = [r.model for r in ordered if not r.success]
        logger.info(
            "Fan-out settled: %d succeeded, %d failed, %d abandoned",
            len(successful),
            len(failed),
            len(abandoned),
        )
        await self._emit(
            EventType.FAN_OUT_SETTLED,
            request,
            phase=Phase.PROPOSE,
            data={"successful": successful, "failed": failed, "abandoned": abandoned},
        )

        update: WallBounceState = {
            "rounds": rounds,
            "fan_out": {
                "successful": successful,
                "failed": failed,
                "abandoned": abandoned,
                "responses": [r.content for r in ordered if r.success],
            },
        }
        best = next((r for r in ordered if r.success), None)
        if best is not None:
            update.update(proposal=best.content, proposer=best.model)
        return update

    @staticmethod
    def _to_round(
        phase: Phase, prompt: str, result: InvocationResult, iteration: int
    ) -> CollaborationRound:
        return CollaborationRound(
            phase=phase,
            model=result.model,
            input=prompt,
            output=result.content,
            latency=result.latency,
            success=result.success,
            iteration=iteration,
            error=result.error,
            usage=result.usage,
            cost=result.cost or Decimal("0"),
        )

    # ------------------------------------------------------------------
    # Result assembly
    # ------------------------------------------------------------------

    def _build_result(self, state: WallBounceState, elapsed: float) -> CollaborationResult:
        rounds = state.get("rounds", [])
        success = bool(state.get("proposal"))
        critique_score = state.get("critique_score")
        revised = bool(state.get("revised"))
        fan_out = state.get("fan_out") or {}

        attempted = _unique([r.model for r in rounds] + list(fan_out.get("abandoned", [])))
        used = _unique([r.model for r in rounds if r.success])
        failed = [m for m in _unique([r.model for r in rounds]) if m not in used]

        metadata = CollaborationMetadata(
            processing_time=elapsed,
            models_used=used,
            models_attempted=attempted,
            successful_models=used,
            failed_models=failed,
            abandoned_models=list(fan_out.get("abandoned", [])),
            total_cost=sum((r.cost for r in rounds), Decimal("0")),
            total_tokens=sum(r.usage.total_tokens for r in rounds),
            quality=estimate_quality(
                success=success, critique_score=critique_score, revised=revised
            ),
            consensus=estimate_consensus(
                success=success,
                fan_out_responses=fan_out.get("responses", []),
                critique_score=critique_score,
            ),
        )
        return CollaborationResult(
            success=success,
            final_response=state.get("final_response", "") if success else "",
            wall_bounce_count=state.get("passes", 0),
            rounds=list(rounds),
            metadata=metadata,
            critique_score=critique_score,
            revised=revised,
            error=state.get("error"),
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _emit(
        self,
        type_: EventType,
        request: CollaborationRequest,
        *,
        phase: Phase | None = None,
        model: str | None = None,
        message: str = "",
        data: dict[str, Any] | None = None,
        duration_ms: int | None = None,
    ) -> None:
        if self.events is None:
            return
        await self.events.publish(
            type_,
            session_id=request.session_id,
            phase=phase.value if phase else None,
            model=model,
            message=message,
            data=data or {},
            duration_ms=duration_ms,
        )

    async def _emit_invocation(
        self, request: CollaborationRequest, phase: Phase, result: InvocationResult
    ) -> None:
        if result.success:
            type_ = EventType.MODEL_INVOKED
        elif result.timed_out:
            type_ = EventType.MODEL_TIMEOUT
        else:
            type_ = EventType.MODEL_FAILED
        await self._emit(
            type_,
            request,
            phase=phase,
            model=result.model,
            message=result.error or "",
            data={"tokens": result.usage.total_tokens, "cost": str(result.cost or 0)},
            duration_ms=round(result.latency * 1000),
        )
