"""
Opportunity Selector - which pair, if any, deserves the planner's attention.

Two modes:
- Position mode: a position is open, only the held pair is snapshotted and
  scored. A failure there is a cycle failure and propagates.
- Scan mode: every tradable pair whose cooldown has expired is snapshotted
  and scored concurrently. Failures are isolated per pair and reported.

The best opportunity is the highest score; ties go to the earlier pair in
configured order. Nothing eligible, or every pair failed, gives a no-op
Selection that the controller turns into HOLD.

The selector never writes cooldown stamps: the controller stamps the
analyzed pairs once the cycle completes.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from .advisory.gateway import AdvisoryGateway
from .advisory.schema import Opportunity
from .errors import AdvisoryUnavailable, ExchangeError, InsufficientData
from .market.snapshot import MarketSnapshot, SnapshotBuilder
from .portfolio.schema import Position
from .risk.manager import RiskManager
from .risk.schema import RiskSnapshot

logger = logging.getLogger(__name__)

ISOLATED_ERRORS = (InsufficientData, AdvisoryUnavailable, ExchangeError)


@dataclass
class PairScan:
    """Result of analyzing a single pair."""
    pair: str
    snapshot: Optional[MarketSnapshot] = None
    opportunity: Optional[Opportunity] = None
    error: Optional[str] = None
    scan_time_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.opportunity is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair,
            "opportunity": self.opportunity.to_dict() if self.opportunity else None,
            "error": self.error,
            "scan_time_ms": self.scan_time_ms,
        }


@dataclass
class Selection:
    """Outcome of one selection pass."""
    mode: str                                   # "scan" or "position"
    scans: List[PairScan] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)   # in cooldown
    best: Optional[PairScan] = None

    @property
    def is_noop(self) -> bool:
        return self.best is None

    @property
    def opportunity(self) -> Optional[Opportunity]:
        return self.best.opportunity if self.best else None

    @property
    def snapshot(self) -> Optional[MarketSnapshot]:
        return self.best.snapshot if self.best else None

    @property
    def analyzed_pairs(self) -> List[str]:
        return [scan.pair for scan in self.scans if scan.ok]

    @property
    def failed(self) -> List[PairScan]:
        return [scan for scan in self.scans if not scan.ok]

    def describe(self) -> str:
        if self.best is not None:
            return f"{self.best.pair} selected (score {self.best.opportunity.score:.2f})"
        if not self.scans:
            return "No eligible pairs (all in cooldown)"
        return "No opportunity: every pair failed" if not self.analyzed_pairs else "No opportunity"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "best": self.best.pair if self.best else None,
            "skipped": list(self.skipped),
            "scans": [scan.to_dict() for scan in self.scans],
        }


class OpportunitySelector:
    """
    Usage:
        selector = OpportunitySelector(builder, gateway, risk_manager, pairs)
        selection = await selector.select(state.snapshot(), position=None)
        if not selection.is_noop:
            print(selection.opportunity.pair, selection.opportunity.score)
    """

    def __init__(
        self,
        builder: SnapshotBuilder,
        gateway: AdvisoryGateway,
        risk_manager: RiskManager,
        pairs: Sequence[str],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.builder = builder
        self.gateway = gateway
        self.risk_manager = risk_manager
        self.pairs = list(pairs)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def select(
        self,
        risk: RiskSnapshot,
        position: Optional[Position] = None,
        progress: Optional[Callable[[PairScan], None]] = None,
    ) -> Selection:
        """
        Run one selection pass.

        Raises:
            InsufficientData / AdvisoryUnavailable / ExchangeError: position
                mode only, when the held pair cannot be analyzed
        """
        if position is not None:
            return await self._select_position(position, progress)
        return await self._select_scan(risk, progress)

    async def _select_position(
        self,
        position: Position,
        progress: Optional[Callable[[PairScan], None]],
    ) -> Selection:
        started = time.time()
        snapshot = await self.builder.build(position.pair)
        opportunity = await self.gateway.score_opportunity(snapshot)
        scan = PairScan(
            pair=position.pair,
            snapshot=snapshot,
            opportunity=opportunity,
            scan_time_ms=(time.time() - started) * 1000,
        )
        if progress:
            progress(scan)
        return Selection(mode="position", scans=[scan], best=scan)

    async def _select_scan(
        self,
        risk: RiskSnapshot,
        progress: Optional[Callable[[PairScan], None]],
    ) -> Selection:
        now = self._clock()
        eligible = self.risk_manager.eligible_pairs(self.pairs, risk, now)
        skipped = [pair for pair in self.pairs if pair not in eligible]
        if skipped:
            logger.info(f"Cooldown: skipping {', '.join(skipped)}")

        selection = Selection(mode="scan", skipped=skipped)
        if not eligible:
            return selection

        results = await asyncio.gather(
            *(self._scan_pair(pair, progress) for pair in eligible),
            return_exceptions=True,
        )

        for pair, result in zip(eligible, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                # Unexpected failure: still isolated, but logged with traceback
                logger.error(f"Scan of {pair} crashed: {result}", exc_info=result)
                result = PairScan(pair=pair, error=str(result))
            selection.scans.append(result)

        for scan in selection.scans:
            if scan.ok and (selection.best is None or scan.opportunity.score > selection.best.opportunity.score):
                selection.best = scan

        logger.info(
            f"Scan complete: {len(selection.analyzed_pairs)}/{len(eligible)} analyzed, "
            f"{selection.describe()}"
        )
        return selection

    async def _scan_pair(
        self,
        pair: str,
        progress: Optional[Callable[[PairScan], None]],
    ) -> PairScan:
        started = time.time()
        scan = PairScan(pair=pair)
        try:
            scan.snapshot = await self.builder.build(pair)
            scan.opportunity = await self.gateway.score_opportunity(scan.snapshot)
        except ISOLATED_ERRORS as e:
            logger.warning(f"⚠️ {pair} skipped: {e}")
            scan.error = str(e)
        scan.scan_time_ms = (time.time() - started) * 1000
        if progress:
            progress(scan)
        return scan
