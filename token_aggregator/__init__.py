"""
Token Aggregator Service
Aggregates token market data from several DEX data providers, serves a merged
cached view and pushes live updates to subscribed clients.
"""

__version__ = "1.0.0"
__author__ = "Token Aggregator Team"
__description__ = "Multi-source token price aggregation with cached queries and live push updates"
