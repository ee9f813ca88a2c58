"""Reconciliation controller that turns pizza orders into batch jobs."""

__version__ = "0.1.0"
