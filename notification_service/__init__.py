"""Notification delivery service for the membership and deals platform."""

__version__ = "1.0.0"
