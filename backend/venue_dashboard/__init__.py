"""Venue dashboard API: calendar availability, covers, campaign timing and business metrics."""

__version__ = "1.0.0"
