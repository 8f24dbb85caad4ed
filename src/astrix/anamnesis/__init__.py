"""Anamnesis - read-result cache keyed by chain, operation and parameters."""
