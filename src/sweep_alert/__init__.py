"""Infer where the car is parked and warn before street cleaning."""

__version__ = "0.1.0"
