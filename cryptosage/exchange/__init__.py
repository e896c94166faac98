"""
Exchange Module - MEXC spot REST access.

Usage:
    from cryptosage.exchange import MexcClient

    client = MexcClient(api_key, api_secret)
    candles = await client.get_klines("XRP/USDT", "1m", 200)
"""

from .client import MexcClient, to_symbol

__all__ = ["MexcClient", "to_symbol"]
