"""
Party Stock - Session Trading Engine

The server-side engine of a party-game stock market. Keeps per-session market
state (rounds, price series, share inventory, user accounts) and applies
buy/sell/loan operations atomically under concurrent requests.
"""

__version__ = "0.1.0"
__author__ = "Party Stock Team"
