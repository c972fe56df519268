"""Strategies for the audits that ship with the sync engine."""
