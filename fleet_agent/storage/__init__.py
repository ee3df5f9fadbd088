"""
Storage layer for fleet-agent.

SQLite persistence for conversation threads, their messages and the
append-only usage ledger.
"""

from . import repository, threads


def initialize_storage(db_path: str) -> None:
    """Create every table the process needs in a single database file."""
    threads.initialize_schema(db_path)
    repository.initialize_schema(db_path)
