"""
OpenAI-backed advisors - the Watcher and the Executor.

Both speak JSON. The engine never trusts the output blindly: the
AdvisoryGateway parses, clamps and retries; the RiskManager sizes and
gates. The prompts only describe the job.

Usage:
    advisor = OpenAIAdvisor(api_key=os.environ["OPENAI_API_KEY"], model="gpt-4o-mini")
    payload = await advisor.score(ScoreRequest(pair="XRP/USDT", market=summarize(snapshot)))
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .schema import PlanRequest, ScoreRequest

logger = logging.getLogger(__name__)


WATCHER_PROMPT = """You are the Watcher, a SPOT crypto market analyst.
You receive indicators and recent candles for ONE pair on two timeframes
(1m for entry timing, 15m for the dominant trend).

Estimate the probability that price moves UP by the take-profit distance
before it moves DOWN by the stop distance over the next few minutes.

Principles:
- Trend is your friend: a 15m trend that is not UP deserves a low score.
- Look for continuation or the start of upward strength on 1m:
  a break of minor resistance, a pullback holding an EMA, a bullish candle pattern.
- Preserving capital beats a low-quality entry.

Respond with a JSON object:
{
  "pair": "<the pair you were given>",
  "p_up": <float 0-1>,
  "score": <float 0-1, overall quality of the buy setup>,
  "regime": {"trend": "UP|DOWN|SIDEWAYS", "volatility": "low|normal|high", "notes": "<short>"},
  "rationale": "<one or two sentences referencing specific indicators>"
}"""


EXECUTOR_PROMPT = """You are the Executor, a quantitative SPOT trader.
The Watcher selected a pair; you decide the precise action on THAT pair.

Rules:
- Never open against the 15m trend. SPOT only: a new position is always a BUY.
- With no open position: BUY only on a clear, trend-aligned, high-probability entry, else HOLD.
- With a LONG open on this pair: SELL to close when the trend weakens or reverses
  (technical structure broken or edge gone), otherwise HOLD. Never BUY more.
- notional_usdt for a new entry is available_capital * risk_per_trade / 100.
  When closing, notional_usdt is the full position size. HOLD means notional_usdt 0.
- Confidence reflects how clear the setup is. Be honest: low clarity, low confidence.

Respond with a JSON object:
{
  "pair": "<the pair you were given>",
  "action": "BUY|SELL|HOLD",
  "notional_usdt": <float>,
  "order_type": "MARKET|LIMIT",
  "limit_price": <float, only for LIMIT>,
  "stop_pct": <float fraction>,
  "take_pct": <float fraction>,
  "confidence": <float 0-1>,
  "technical_structure_ok": <bool, when a position is open>,
  "ev_ok": <bool, when a position is open>,
  "rationale": "<concise, data-driven, referencing specific indicators>"
}"""


def parse_json_content(content: Optional[str]) -> Dict[str, Any]:
    """
    Parse a model reply into a JSON object.

    Raises:
        ValueError: empty reply, invalid JSON, or not an object
    """
    if not content:
        raise ValueError("Empty response from model")

    # Handle potential markdown code blocks in response
    if "```json" in content:
        content = content.split("```json")[1].split("```")[0]
    elif "```" in content:
        content = content.split("```")[1].split("```")[0]

    parsed = json.loads(content.strip())
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _with_prior_error(lines: List[str], prior_error: Optional[str]) -> str:
    if prior_error:
        lines.append("")
        lines.append(
            f"Your previous answer failed with: {prior_error}. "
            f"Fix it and reply with a valid JSON object only."
        )
    return "\n".join(lines)


def render_score_message(request: ScoreRequest) -> str:
    lines = [
        f"Pair: {request.pair}",
        "Market snapshot:",
        request.market,
    ]
    return _with_prior_error(lines, request.prior_error)


def render_plan_message(request: PlanRequest) -> str:
    position = request.position
    lines = [
        f"Pair: {request.pair}",
        f"Watcher p_up: {request.opportunity.p_up:.3f} | score: {request.opportunity.score:.3f}",
        f"Watcher rationale: {request.opportunity.rationale or 'N/A'}",
        f"Regime: {json.dumps(request.opportunity.regime, default=str)}",
        f"Price: {request.price}",
        f"ATR(14): {request.atr}",
        f"Spread: {request.spread:.5f} | Fees: {request.fees:.5f} | Slippage: {request.slippage:.5f}",
        f"Suggested stop_pct: {request.stop_pct} | take_pct: {request.take_pct}",
        f"Available capital: {request.available_capital} USDT",
        f"Risk per trade: {request.risk_per_trade}%",
    ]
    if position is None:
        lines.append("Current position: NONE")
    else:
        pnl_pct = position.unrealized_pnl_pct(request.price)
        lines.append(
            f"Current position: LONG {position.pair} | entry {position.entry_price} | "
            f"size {position.size} USDT | unrealized "
            f"{'unknown' if pnl_pct is None else f'{pnl_pct:.2f}%'}"
        )
    return _with_prior_error(lines, request.prior_error)


class OpenAIAdvisor:
    """
    Chat-completions advisor returning raw JSON payloads.

    Parsing and validation of the payload belong to the gateway; this class
    only raises when the transport fails or the reply is not a JSON object.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_completion_tokens: int = 800,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_completion_tokens = max_completion_tokens
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self._client = client or AsyncOpenAI(api_key=self.api_key)
        logger.info(f"OpenAI advisor initialized with {model}")

    @classmethod
    def from_config(cls, config, api_key: Optional[str] = None) -> "OpenAIAdvisor":
        return cls(
            api_key=api_key,
            model=config.model,
            temperature=config.temperature,
            max_completion_tokens=config.max_completion_tokens,
        )

    async def score(self, request: ScoreRequest) -> Dict[str, Any]:
        return await self._complete(WATCHER_PROMPT, render_score_message(request))

    async def plan(self, request: PlanRequest) -> Dict[str, Any]:
        return await self._complete(EXECUTOR_PROMPT, render_plan_message(request))

    async def _complete(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message}
            ],
            temperature=self.temperature,
            response_format={"type": "json_object"},
            max_completion_tokens=self.max_completion_tokens
        )
        content = response.choices[0].message.content
        return parse_json_content(content)
