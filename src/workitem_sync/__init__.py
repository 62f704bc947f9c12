"""Idempotent reconciliation of generated work items with an issue tracker."""

__version__ = "0.3.0"
