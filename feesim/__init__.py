"""Mempool queue simulation for transaction fee estimation and prediction scoring."""

__version__ = "0.3.2"