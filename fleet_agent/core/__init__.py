"""
Core modules for fleet-agent.

This package contains pricing, session resolution, the notification bus
and the heartbeat scheduler.
"""
