"""Offer negotiation, engagement lifecycle and escrow settlement."""

__version__ = "0.1.0"
