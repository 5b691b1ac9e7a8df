"""Gatekeeper: two-factor authentication for the back-office API."""

__version__ = "1.0.0"
