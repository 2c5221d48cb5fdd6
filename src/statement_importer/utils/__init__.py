"""Shared helpers for dates, amounts, and logging."""
