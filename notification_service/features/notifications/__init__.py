"""Notification delivery pipeline: templates, channel, queue, audit and orchestration."""
