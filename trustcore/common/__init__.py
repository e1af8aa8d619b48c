"""Shared exceptions, metrics and resilience helpers."""
