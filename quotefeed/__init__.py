"""
TSX Quote Feed: polled real-time market data with connection management.
"""

__version__ = "1.0.0"
