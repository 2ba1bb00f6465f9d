"""Cloudfest chat registry: users, an append-only message ledger and groups."""

__version__ = "0.1.0"
