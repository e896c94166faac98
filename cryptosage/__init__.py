# CryptoSage Core
# Spot crypto decision and risk-management engine

__version__ = "1.0.0"
