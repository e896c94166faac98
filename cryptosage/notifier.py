"""
Discord Notification Module

Sends formatted trade alerts to Discord via webhook. Called from worker
threads (asyncio.to_thread); every method returns True when delivered.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Optional

import requests
from dotenv import load_dotenv

from .ledger.schema import TradeRecord

logger = logging.getLogger(__name__)

load_dotenv()

WEBHOOK_URL = os.getenv("DISCORD_WEBHOOK_URL", "")


def _footer() -> dict:
    return {"text": f"CryptoSage | {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"}


class DiscordNotifier:
    """Sends embed cards to Discord for trade alerts."""

    def __init__(self, webhook_url: Optional[str] = None):
        self.url = webhook_url or WEBHOOK_URL

    def send_trade_alert(self, record: TradeRecord) -> bool:
        """'Position opened' alert (green)."""
        fields = [
            {"name": "Action", "value": record.action.value, "inline": True},
            {"name": "Entry Price", "value": f"${record.price:,.8f}", "inline": True},
            {"name": "Notional", "value": f"${record.notional:,.2f}", "inline": True},
        ]
        if record.stop_pct is not None:
            fields.append({"name": "🛑 Stop", "value": f"{record.stop_pct:.2%}", "inline": True})
        if record.take_pct is not None:
            fields.append({"name": "🎯 Take", "value": f"{record.take_pct:.2%}", "inline": True})
        if record.confidence is not None:
            fields.append({"name": "Confidence", "value": f"{record.confidence:.2f}", "inline": True})

        embed = {
            "title": f"🚨 NEW POSITION: {record.pair}",
            "description": record.rationale[:1000],
            "color": 0x00FF00,
            "fields": fields,
            "footer": _footer()
        }
        return self._post(embed)

    def send_exit_alert(self, record: TradeRecord) -> bool:
        """'Position closed' alert, green for profit and red for loss."""
        profit = record.pnl >= 0
        emoji = "💰" if profit else "💸"
        embed = {
            "title": f"{emoji} POSITION CLOSED: {record.pair}",
            "description": record.rationale[:1000],
            "color": 0x00FF00 if profit else 0xFF0000,
            "fields": [
                {"name": "Exit", "value": f"${record.price:,.8f}", "inline": True},
                {"name": "Notional", "value": f"${record.notional:,.2f}", "inline": True},
                {"name": "P&L", "value": f"${record.pnl:,.4f}", "inline": True},
            ],
            "footer": _footer()
        }
        return self._post(embed)

    def send_risk_alert(self, message: str, severity: str = "warning") -> bool:
        """Risk management alert (blue / orange / red)."""
        colors = {
            "info": 0x3498DB,
            "warning": 0xFFA500,
            "critical": 0xFF0000
        }
        embed = {
            "title": "⚠️ RISK ALERT",
            "description": message[:2000],
            "color": colors.get(severity, 0xFFA500),
            "footer": _footer()
        }
        return self._post(embed)

    def send_system_alert(self, title: str, message: str) -> bool:
        """General system status alert (blue)."""
        embed = {
            "title": f"🖥️ {title}",
            "description": message[:2000],
            "color": 0x3498DB,
            "footer": _footer()
        }
        return self._post(embed)

    def _post(self, embed_data: dict) -> bool:
        """Posts embed to Discord webhook."""
        if not self.url:
            logger.debug("Discord webhook not configured - alert dropped")
            return False

        payload = {
            "username": "CryptoSage",
            "embeds": [embed_data]
        }
        try:
            response = requests.post(self.url, json=payload, timeout=10)
            return response.status_code in (200, 204)
        except requests.RequestException as e:
            logger.warning(f"Failed to send Discord alert: {e}")
            return False
