"""feedstream: a cached, conditional-fetch feed aggregator."""

__version__ = "0.4.0"
