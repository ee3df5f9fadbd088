"""
Repository pattern for usage data access.

Append-only ledger of per-request token usage and its aggregate summaries.
"""

from datetime import datetime, timezone
from typing import List, Optional

from ..core.pricing import PRICING_TABLE, PricingTable
from .db import get_connection
from .models import UsageRecord, UsageSummary

_USAGE_COLUMNS = """
    id, agent_id, thread_id, model_id, input_tokens, output_tokens,
    total_tokens, cache_read_tokens, cache_write_tokens, cost, timestamp
"""


class UsageRepository:
    """Repository for recording and summarizing token usage.

    Every record_usage call is a single INSERT committed on its own
    connection, so concurrent writers never interleave partial rows.
    Summaries are computed from the table at call time.
    """

    def __init__(self, db_path: str, pricing: PricingTable = PRICING_TABLE):
        """Initialize the repository.

        Args:
            db_path: Path to SQLite database file
            pricing: Pricing table used to cost each record
        """
        self.db_path = db_path
        self.pricing = pricing

    def record_usage(
        self,
        agent_id: str,
        thread_id: Optional[str],
        model_id: str,
        input_tokens: int,
        output_tokens: int,
        cache_read_tokens: int = 0,
        cache_write_tokens: int = 0,
    ) -> UsageRecord:
        """Append one usage record, pricing it with the configured table.

        Args:
            agent_id: Agent that served the request
            thread_id: Conversation thread, or None
            model_id: Model that produced the counters
            input_tokens: Prompt tokens
            output_tokens: Completion tokens
            cache_read_tokens: Prompt tokens served from the provider cache
            cache_write_tokens: Prompt tokens written to the provider cache

        Returns:
            The stored record

        Raises:
            ValueError: If any token counter is negative
            sqlite3.Error: Propagated without modification
        """
        counters = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_read_tokens": cache_read_tokens,
            "cache_write_tokens": cache_write_tokens,
        }
        for name, value in counters.items():
            if value < 0:
                raise ValueError(f"{name} cannot be negative")

        total_tokens = input_tokens + output_tokens
        cost = self.pricing.calculate_cost(model_id, input_tokens, output_tokens)
        timestamp = datetime.now(timezone.utc)

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO usage_record
                (agent_id, thread_id, model_id, input_tokens, output_tokens,
                 total_tokens, cache_read_tokens, cache_write_tokens, cost, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                agent_id,
                thread_id,
                model_id,
                input_tokens,
                output_tokens,
                total_tokens,
                cache_read_tokens,
                cache_write_tokens,
                cost,
                timestamp.isoformat()
            ))
            conn.commit()
            record_id = cursor.lastrowid
        finally:
            conn.close()

        return UsageRecord(
            id=record_id,
            agent_id=agent_id,
            thread_id=thread_id,
            model_id=model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            cache_read_tokens=cache_read_tokens,
            cache_write_tokens=cache_write_tokens,
            cost=cost,
            timestamp=timestamp
        )

    def summarize(self, agent_id: str, thread_id: Optional[str] = None) -> UsageSummary:
        """Aggregate all usage for an agent, optionally scoped to one thread.

        Args:
            agent_id: Agent to summarize
            thread_id: Optional thread filter

        Returns:
            UsageSummary; total_cost is None when no matching record was priced
            and cache_hit_rate is None when no input tokens were recorded
        """
        query = """
            SELECT
                COALESCE(SUM(input_tokens), 0),
                COALESCE(SUM(output_tokens), 0),
                COALESCE(SUM(total_tokens), 0),
                COALESCE(SUM(cache_read_tokens), 0),
                COALESCE(SUM(cache_write_tokens), 0),
                SUM(cost),
                COUNT(*)
            FROM usage_record
            WHERE agent_id = ?
        """
        params: List[object] = [agent_id]
        if thread_id is not None:
            query += " AND thread_id = ?"
            params.append(thread_id)

        conn = get_connection(self.db_path)
        try:
            row = conn.execute(query, params).fetchone()
        finally:
            conn.close()

        total_input = row[0]
        cache_read = row[3]
        cache_hit_rate = (cache_read / total_input) * 100 if total_input > 0 else None

        return UsageSummary(
            total_input_tokens=total_input,
            total_output_tokens=row[1],
            total_tokens=row[2],
            total_cache_read_tokens=cache_read,
            total_cache_write_tokens=row[4],
            total_cost=float(row[5]) if row[5] is not None else None,
            cache_hit_rate=cache_hit_rate,
            requests=row[6]
        )

    def fetch_recent_usage_records(
        self,
        agent_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        limit: int = 20
    ) -> List[UsageRecord]:
        """Fetch recent usage records, newest first.

        Args:
            agent_id: Optional agent filter
            thread_id: Optional thread filter
            limit: Maximum number of records to return

        Returns:
            List of usage records ordered by id (newest first)
        """
        query = f"SELECT {_USAGE_COLUMNS} FROM usage_record"
        params: List[object] = []
        conditions = []

        if agent_id:
            conditions.append("agent_id = ?")
            params.append(agent_id)
        if thread_id:
            conditions.append("thread_id = ?")
            params.append(thread_id)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()

        return [_row_to_record(row) for row in rows]


def _row_to_record(row) -> UsageRecord:
    return UsageRecord(
        id=row[0],
        agent_id=row[1],
        thread_id=row[2],
        model_id=row[3],
        input_tokens=row[4],
        output_tokens=row[5],
        total_tokens=row[6],
        cache_read_tokens=row[7],
        cache_write_tokens=row[8],
        cost=row[9],
        timestamp=datetime.fromisoformat(row[10])
    )


def initialize_schema(db_path: str) -> None:
    """Create the usage_record table and its indexes if they don't exist.

    This is an append-only ledger. No UPDATE or DELETE operations should
    ever be performed on this table.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent_id TEXT NOT NULL,
                thread_id TEXT,
                model_id TEXT NOT NULL,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                cache_read_tokens INTEGER NOT NULL DEFAULT 0,
                cache_write_tokens INTEGER NOT NULL DEFAULT 0,
                cost REAL,
                timestamp TEXT NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_usage_agent ON usage_record(agent_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_usage_thread ON usage_record(thread_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_usage_timestamp ON usage_record(timestamp)")
        conn.commit()
    finally:
        conn.close()
