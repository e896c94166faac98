"""
Advisory Gateway - retrying, validating front door to the advisors.

Two operations:
    score_opportunity(snapshot) -> Opportunity   (the Watcher)
    plan_execution(request)     -> Decision      (the Executor)

Each call is retried `retries` times with linear backoff (delay * attempt).
On a retry the previous error text is handed back to the advisor through
the request's prior_error field so it can correct itself. A payload that
fails to parse counts as a failed attempt. When every attempt fails the
gateway raises AdvisoryUnavailable carrying the last error.

Outputs are normalized before they leave:
- p_up, score and confidence clamped to [0, 1]
- the pair is always the one that was asked about
- HOLD carries notional 0 (Decision enforces it)
"""

import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Protocol, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from ..errors import AdvisoryUnavailable
from ..market.snapshot import MarketSnapshot, summarize
from .schema import Decision, Opportunity, PlanRequest, ScoreRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Advisor(Protocol):
    """Anything that can answer the two advisory questions with a JSON payload."""

    async def score(self, request: ScoreRequest) -> Dict[str, Any]:
        ...

    async def plan(self, request: PlanRequest) -> Dict[str, Any]:
        ...


class AdvisoryGateway:
    """
    Usage:
        gateway = AdvisoryGateway(OpenAIAdvisor(api_key), retries=1, retry_delay_seconds=1.0)
        opportunity = await gateway.score_opportunity(snapshot)
        decision = await gateway.plan_execution(plan_request)
    """

    def __init__(self, advisor: Advisor, retries: int = 1, retry_delay_seconds: float = 1.0):
        if retries < 0:
            raise ValueError(f"retries must be >= 0, got {retries}")
        self.advisor = advisor
        self.retries = retries
        self.retry_delay_seconds = retry_delay_seconds

    @classmethod
    def from_config(cls, advisor: Advisor, config) -> "AdvisoryGateway":
        """Build from an AdvisoryConfig."""
        return cls(advisor, retries=config.retries, retry_delay_seconds=config.retry_delay_seconds)

    async def score_opportunity(self, snapshot: MarketSnapshot) -> Opportunity:
        """Ask the Watcher for p_up / score / regime on one pair."""
        request = ScoreRequest(pair=snapshot.pair, market=summarize(snapshot))
        opportunity = await self._call(
            "score_opportunity",
            request,
            self.advisor.score,
            lambda payload: Opportunity.from_payload(snapshot.pair, payload),
        )
        return replace(opportunity, pair=snapshot.pair)

    async def plan_execution(self, request: PlanRequest) -> Decision:
        """
        Ask the Executor for a concrete decision on request.pair.

        A position open on a different pair short-circuits to HOLD with
        confidence 1 without calling the advisor.
        """
        position = request.position
        if position is not None and position.pair != request.pair:
            logger.info(f"Holding {request.pair}: position already open in {position.pair}")
            return Decision.hold(
                request.pair,
                f"Holding {request.pair}: a position is already open in {position.pair}",
                confidence=1.0,
                p_up=request.opportunity.p_up,
            )

        decision = await self._call(
            "plan_execution",
            request,
            self.advisor.plan,
            lambda payload: Decision.from_payload(request.pair, payload),
        )
        return replace(
            decision,
            pair=request.pair,
            stop_pct=decision.stop_pct if decision.stop_pct is not None else request.stop_pct,
            take_pct=decision.take_pct if decision.take_pct is not None else request.take_pct,
            p_up=request.opportunity.p_up,
        )

    async def _call(
        self,
        operation: str,
        request: Any,
        invoke: Callable[[Any], Awaitable[Dict[str, Any]]],
        parse: Callable[[Dict[str, Any]], T],
    ) -> T:
        attempts = 0

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            request.prior_error = str(error)
            logger.warning(
                f"⚠️ Advisory {operation} attempt {retry_state.attempt_number} failed: "
                f"{error} - retrying"
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retries + 1),
                wait=wait_incrementing(
                    start=self.retry_delay_seconds,
                    increment=self.retry_delay_seconds,
                ),
                retry=retry_if_exception_type(Exception),
                before_sleep=_before_sleep,
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    payload = await invoke(request)
                    if not isinstance(payload, dict):
                        raise ValueError(f"Advisor returned {type(payload).__name__}, expected object")
                    return parse(payload)
        except Exception as e:
            logger.error(f"❌ Advisory {operation} unavailable after {attempts} attempt(s): {e}")
            raise AdvisoryUnavailable(operation, e, attempts) from e

        raise AdvisoryUnavailable(operation, RuntimeError("no attempt made"), attempts)
