"""Ledger access: clients, typed events and the local projection."""
