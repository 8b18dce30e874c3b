"""TradeUp equity-opportunity pipeline: valuation, equity, deal sheets, client offers."""

__version__ = "0.1.0"
