"""Reconcile actual transactions against planned cash-flow occurrences."""

__version__ = "0.1.0"
