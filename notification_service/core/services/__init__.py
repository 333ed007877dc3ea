"""Base service classes."""
