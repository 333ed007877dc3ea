"""Outbound email infrastructure."""
