"""Crowdfunding campaigns with per-campaign deposit addresses and balance polling."""

__version__ = "0.1.0"
