"""
Autonomous scheduler and exchange heartbeat.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import ScriptedAdvisor, build_engine, collect

from cryptosage.controller import (
    AutonomousScheduler,
    CycleOutcome,
    CycleState,
    ExchangeStatusMonitor,
    TriggerSource,
)
from cryptosage.errors import ExchangeConnectionError


class TestExchangeStatusMonitor:
    @pytest.mark.asyncio
    async def test_reports_transitions(self):
        client = Mock()
        client.ping = AsyncMock(side_effect=[True, True, False])
        changes = []
        monitor = ExchangeStatusMonitor(client, on_change=changes.append)

        assert monitor.connected is False
        assert await monitor.check() is True
        await monitor.check()
        assert await monitor.check() is False

        assert changes == [True, False]
        assert monitor.to_dict()["last_checked"] is not None

    @pytest.mark.asyncio
    async def test_ping_error_means_disconnected(self):
        client = Mock()
        client.ping = AsyncMock(side_effect=ExchangeConnectionError("timeout"))
        monitor = ExchangeStatusMonitor(client)
        monitor.connected = True

        assert await monitor.check() is False
        assert monitor.connected is False


class TestAutonomousScheduler:
    @pytest.fixture
    async def engine(self, tmp_path):
        return await build_engine(tmp_path, ScriptedAdvisor())

    @pytest.mark.asyncio
    async def test_tick_runs_autonomous_cycle(self, engine):
        events = []
        scheduler = AutonomousScheduler(engine.controller, interval_seconds=0, on_event=events.append)

        tick = await scheduler.tick()

        assert tick.ran
        assert tick.outcome.state == CycleState.DONE
        assert tick.outcome.source == TriggerSource.AUTONOMOUS
        assert isinstance(events[-1], CycleOutcome)
        assert scheduler.get_status()["tick_count"] == 1

    @pytest.mark.asyncio
    async def test_skips_while_cycle_in_flight(self, engine):
        engine.advisor.gate = asyncio.Event()
        scheduler = AutonomousScheduler(engine.controller)
        stream = engine.controller.run_cycle(TriggerSource.MANUAL)

        tick = await scheduler.tick()
        assert not tick.ran
        assert tick.skip_reason == "Cycle in flight"

        engine.advisor.gate.set()
        await collect(stream)
        assert scheduler.skip_reason() is None

    @pytest.mark.asyncio
    async def test_skips_when_halted(self, engine):
        await engine.state.halt("Multiple open positions detected")
        tick = await AutonomousScheduler(engine.controller).tick()
        assert tick.skip_reason == "Trading halted: Multiple open positions detected"
        assert engine.advisor.score_calls == []

    @pytest.mark.asyncio
    async def test_skips_on_kill_switch(self, engine):
        await engine.state.rederive(Decimal("100"), Decimal("97"), Decimal("-3"))
        tick = await AutonomousScheduler(engine.controller).tick()
        assert tick.skip_reason == "Kill-switch active"

    @pytest.mark.asyncio
    async def test_skips_when_exchange_disconnected(self, engine):
        client = Mock()
        client.ping = AsyncMock(return_value=True)
        monitor = ExchangeStatusMonitor(client)
        scheduler = AutonomousScheduler(engine.controller, monitor)

        assert scheduler.skip_reason() == "Exchange disconnected"
        await monitor.check()
        assert scheduler.skip_reason() is None

    @pytest.mark.asyncio
    async def test_run_until_shutdown(self, engine):
        scheduler = AutonomousScheduler(engine.controller, interval_seconds=0.01)
        task = asyncio.create_task(scheduler.run())

        for _ in range(500):
            if scheduler.last_tick is not None:
                break
            await asyncio.sleep(0.01)
        scheduler.shutdown()
        await asyncio.wait_for(task, timeout=5)

        assert scheduler.last_tick.ran
        assert not scheduler.running
