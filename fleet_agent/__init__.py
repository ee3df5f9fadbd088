"""
fleet-agent.

Agent-serving process with conversation threads, usage metering and
scheduled heartbeat notifications.
"""

__version__ = "0.3.0"
