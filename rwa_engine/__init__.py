"""Pricing and portfolio-valuation engine for tokenized real-world assets."""

__version__ = "0.1.0"
