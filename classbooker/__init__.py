"""Automated recurring class bookings for a platform without a public API."""

__version__ = "0.1.0"
