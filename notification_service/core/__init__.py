"""Core building blocks: settings, database base classes, exceptions."""
