"""
Discord alerts: payload shape and delivery failures.
"""

from decimal import Decimal
from unittest.mock import Mock, patch

import requests

from cryptosage.advisory import Action
from cryptosage.ledger import TradeRecord, TradeStatus
from cryptosage.notifier import DiscordNotifier


def closed(pnl):
    return TradeRecord(
        pair="XRP/USDT", action=Action.SELL, price=Decimal("0.51"), notional=Decimal("10"),
        status=TradeStatus.CLOSED, pnl=Decimal(pnl), rationale="CLOSE: take profit",
    )


class TestDiscordNotifier:
    def test_without_webhook_nothing_is_sent(self):
        with patch("cryptosage.notifier.WEBHOOK_URL", ""), patch("cryptosage.notifier.requests.post") as post:
            assert DiscordNotifier("").send_risk_alert("halted") is False
        post.assert_not_called()

    def test_exit_alert_color_follows_pnl(self):
        notifier = DiscordNotifier("https://discord.test/webhook")
        with patch("cryptosage.notifier.requests.post", return_value=Mock(status_code=204)) as post:
            assert notifier.send_exit_alert(closed("0.25"))
            assert notifier.send_exit_alert(closed("-0.25"))

        profit, loss = (call.kwargs["json"]["embeds"][0] for call in post.call_args_list)
        assert profit["color"] == 0x00FF00
        assert loss["color"] == 0xFF0000
        assert profit["title"].endswith("XRP/USDT")

    def test_trade_alert_includes_stop_and_take(self):
        record = TradeRecord(
            pair="DOGE/USDT", action=Action.BUY, price=Decimal("0.1"), notional=Decimal("10"),
            status=TradeStatus.OPEN, stop_pct=0.004, take_pct=0.005, confidence=0.9, rationale="OPEN",
        )
        with patch("cryptosage.notifier.requests.post", return_value=Mock(status_code=200)) as post:
            DiscordNotifier("https://discord.test/webhook").send_trade_alert(record)

        names = [f["name"] for f in post.call_args.kwargs["json"]["embeds"][0]["fields"]]
        assert "🛑 Stop" in names
        assert "🎯 Take" in names

    def test_delivery_failure_returns_false(self):
        with patch("cryptosage.notifier.requests.post", side_effect=requests.ConnectionError("refused")):
            assert DiscordNotifier("https://discord.test/webhook").send_system_alert("Boot", "ok") is False
