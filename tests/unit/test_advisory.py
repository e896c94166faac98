"""
Advisory layer: payload parsing, HOLD invariant, retry with prior_error,
and the OpenAI advisor's reply handling.
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import FakeClock, FakeMarket, ScriptedAdvisor

from cryptosage.advisory import (
    Action,
    AdvisoryGateway,
    Decision,
    OpenAIAdvisor,
    Opportunity,
    OrderKind,
    PlanRequest,
    ScoreRequest,
    parse_json_content,
)
from cryptosage.advisory.llm import render_plan_message, render_score_message
from cryptosage.errors import AdvisoryUnavailable
from cryptosage.market import SnapshotBuilder
from cryptosage.portfolio import Position


def plan_request(pair="XRP/USDT", position=None) -> PlanRequest:
    return PlanRequest(
        opportunity=Opportunity(pair=pair, p_up=0.6, score=0.7, rationale="ok"),
        price=Decimal("1.0"),
        atr=0.002,
        spread=0.0001,
        fees=0.001,
        slippage=0.00025,
        available_capital=Decimal("100"),
        risk_per_trade=10.0,
        position=position,
        stop_pct=0.004,
        take_pct=0.005,
    )


class TestDecisionInvariant:
    def test_hold_always_has_zero_notional(self):
        decision = Decision(pair="XRP/USDT", action=Action.HOLD, notional=Decimal("25"))
        assert decision.notional == Decimal("0")

    def test_hold_from_payload_with_notional(self):
        decision = Decision.from_payload("XRP/USDT", {"action": "hold", "notional_usdt": 50})
        assert decision.action == Action.HOLD
        assert decision.notional == Decimal("0")

    def test_with_notional_on_hold_stays_zero(self):
        decision = Decision.hold("XRP/USDT", "wait").with_notional(Decimal("10"), "[ADJUSTED]")
        assert decision.notional == Decimal("0")

    def test_negative_notional_rejected(self):
        with pytest.raises(ValueError):
            Decision(pair="XRP/USDT", action=Action.BUY, notional=Decimal("-1"))

    def test_limit_requires_price(self):
        with pytest.raises(ValueError):
            Decision(pair="XRP/USDT", action=Action.BUY, notional=Decimal("10"), order_kind=OrderKind.LIMIT)

    def test_confidence_clamped(self):
        assert Decision(pair="X/USDT", action=Action.BUY, confidence=1.7).confidence == 1.0
        assert Decision(pair="X/USDT", action=Action.BUY, confidence="nan").confidence == 0.0

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError):
            Decision.from_payload("XRP/USDT", {"action": "SHORT"})

    def test_camel_case_exit_flags(self):
        decision = Decision.from_payload(
            "XRP/USDT", {"action": "SELL", "technicalStructureOK": False, "evOK": True}
        )
        assert decision.technical_structure_ok is False
        assert decision.ev_ok is True

    @pytest.mark.parametrize("raw,expected", [
        ("false", False),
        ("False", False),
        ("0", False),
        ("no", False),
        ("true", True),
        ("YES", True),
        (1, True),
        (0, False),
    ])
    def test_string_exit_flags(self, raw, expected):
        decision = Decision.from_payload(
            "XRP/USDT", {"action": "SELL", "technical_structure_ok": raw, "evOK": raw}
        )
        assert decision.technical_structure_ok is expected
        assert decision.ev_ok is expected

    def test_missing_exit_flags_stay_unknown(self):
        decision = Decision.from_payload("XRP/USDT", {"action": "HOLD"})
        assert decision.technical_structure_ok is None
        assert decision.ev_ok is None


class TestOpportunity:
    def test_scores_clamped_and_regime_normalized(self):
        opportunity = Opportunity.from_payload("XRP/USDT", {"p_up": 1.4, "score": -0.2, "regime": "choppy"})
        assert opportunity.p_up == 1.0
        assert opportunity.score == 0.0
        assert opportunity.regime == {"label": "choppy"}


class TestParseJsonContent:
    def test_plain_object(self):
        assert parse_json_content('{"p_up": 0.5}') == {"p_up": 0.5}

    def test_fenced_object(self):
        assert parse_json_content('```json\n{"p_up": 0.5}\n```') == {"p_up": 0.5}

    @pytest.mark.parametrize("content", [None, "", "not json", "[1, 2]"])
    def test_invalid_replies(self, content):
        with pytest.raises(ValueError):
            parse_json_content(content)


class TestGatewayRetry:
    @pytest.fixture
    async def snapshot(self):
        return await SnapshotBuilder(FakeMarket(["XRP/USDT"]), clock=FakeClock()).build("XRP/USDT")

    @pytest.mark.asyncio
    async def test_fail_once_then_succeed_retries_exactly_once(self, snapshot):
        advisor = ScriptedAdvisor(scores={
            "XRP/USDT": [ValueError("missing p_up"), {"p_up": 0.7, "score": 0.8}],
        })
        gateway = AdvisoryGateway(advisor, retries=1, retry_delay_seconds=0)

        opportunity = await gateway.score_opportunity(snapshot)

        assert opportunity.p_up == 0.7
        assert len(advisor.score_calls) == 2
        assert advisor.score_calls[0][1] is None
        assert advisor.score_calls[1][1] == "missing p_up"

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_with_last_error(self, snapshot):
        advisor = ScriptedAdvisor(scores={
            "XRP/USDT": [RuntimeError("first"), RuntimeError("second")],
        })
        gateway = AdvisoryGateway(advisor, retries=1, retry_delay_seconds=0)

        with pytest.raises(AdvisoryUnavailable) as exc:
            await gateway.score_opportunity(snapshot)

        assert exc.value.attempts == 2
        assert str(exc.value.last_error) == "second"
        assert exc.value.operation == "score_opportunity"

    @pytest.mark.asyncio
    async def test_zero_retries_is_single_attempt(self, snapshot):
        advisor = ScriptedAdvisor(scores={"XRP/USDT": RuntimeError("down")})
        gateway = AdvisoryGateway(advisor, retries=0, retry_delay_seconds=0)

        with pytest.raises(AdvisoryUnavailable):
            await gateway.score_opportunity(snapshot)
        assert len(advisor.score_calls) == 1

    @pytest.mark.asyncio
    async def test_unparseable_payload_counts_as_failure(self):
        advisor = ScriptedAdvisor(plans=[{"action": "MAYBE"}, {"action": "HOLD", "confidence": 0.9}])
        gateway = AdvisoryGateway(advisor, retries=1, retry_delay_seconds=0)

        decision = await gateway.plan_execution(plan_request())

        assert decision.action == Action.HOLD
        assert len(advisor.plan_calls) == 2
        assert "MAYBE" in advisor.plan_calls[1][1]

    @pytest.mark.asyncio
    async def test_score_pair_is_the_one_asked_about(self, snapshot):
        advisor = ScriptedAdvisor(scores={"XRP/USDT": {"pair": "DOGE/USDT", "p_up": 0.6, "score": 0.6}})
        gateway = AdvisoryGateway(advisor, retries=0)

        opportunity = await gateway.score_opportunity(snapshot)
        assert opportunity.pair == "XRP/USDT"

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            AdvisoryGateway(ScriptedAdvisor(), retries=-1)


class TestPlanExecution:
    @pytest.mark.asyncio
    async def test_position_on_other_pair_holds_without_calling_advisor(self):
        advisor = ScriptedAdvisor(plans={"action": "BUY", "notional_usdt": 10, "confidence": 0.9})
        gateway = AdvisoryGateway(advisor, retries=0)
        position = Position(pair="DOGE/USDT", entry_price=Decimal("0.1"), size=Decimal("10"), quantity=Decimal("100"))

        decision = await gateway.plan_execution(plan_request("XRP/USDT", position=position))

        assert decision.action == Action.HOLD
        assert decision.confidence == 1.0
        assert decision.notional == Decimal("0")
        assert advisor.plan_calls == []

    @pytest.mark.asyncio
    async def test_stop_take_and_p_up_filled_from_request(self):
        advisor = ScriptedAdvisor(plans={"pair": "PEPE/USDT", "action": "BUY", "notional_usdt": 10, "confidence": 0.9})
        gateway = AdvisoryGateway(advisor, retries=0)

        decision = await gateway.plan_execution(plan_request("XRP/USDT"))

        assert decision.pair == "XRP/USDT"
        assert decision.stop_pct == 0.004
        assert decision.take_pct == 0.005
        assert decision.p_up == 0.6


class TestOpenAIAdvisor:
    def _client(self, content):
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])
        client = Mock()
        client.chat.completions.create = AsyncMock(return_value=response)
        return client

    @pytest.mark.asyncio
    async def test_score_returns_parsed_payload(self):
        client = self._client('{"p_up": 0.62, "score": 0.7}')
        advisor = OpenAIAdvisor(api_key="test", model="gpt-4o-mini", client=client)

        payload = await advisor.score(ScoreRequest(pair="XRP/USDT", market="{}"))

        assert payload == {"p_up": 0.62, "score": 0.7}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_empty_reply_raises(self):
        advisor = OpenAIAdvisor(api_key="test", client=self._client(None))
        with pytest.raises(ValueError):
            await advisor.plan(plan_request())

    def test_prior_error_is_appended_to_prompt(self):
        request = ScoreRequest(pair="XRP/USDT", market="{}", prior_error="missing p_up")
        assert "missing p_up" in render_score_message(request)
        assert "previous answer failed" not in render_plan_message(plan_request())

    def test_plan_message_describes_position(self):
        position = Position(pair="XRP/USDT", entry_price=Decimal("0.8"), size=Decimal("8"), quantity=Decimal("10"))
        message = render_plan_message(plan_request(position=position))
        assert "LONG XRP/USDT" in message
        assert "25.00%" in message
