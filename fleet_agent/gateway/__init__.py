"""
Request gateway for fleet-agent.

Orchestration service plus the FastAPI application built around it.
"""
