"""Prospec: AI construction-cost estimation with budgeted shopping-search pricing."""

__version__ = "0.1.0"
