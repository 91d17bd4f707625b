"""StockWatch: product availability and price tracking across retailers."""

__version__ = "0.1.0"
