"""
CLI interface for fleet-agent.

Runs the server and gives command-line access to usage, heartbeat and chat.
"""

import asyncio
import sys
from typing import Optional

import httpx
import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from fleet_agent.config.loader import AgentConfig, ConfigError, load_config
from fleet_agent.core.heartbeat import HeartbeatOutcome, HeartbeatScheduler
from fleet_agent.core.notifications import NotificationBus
from fleet_agent.gateway.app import build_app
from fleet_agent.logs import configure_logging
from fleet_agent.sdk.agent_client import build_agent
from fleet_agent.storage import initialize_storage
from fleet_agent.storage.models import UsageSummary
from fleet_agent.storage.repository import UsageRepository
from fleet_agent.storage.threads import ThreadRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# All CLI chat sessions belong to the same resource.
CLI_RESOURCE_ID = "cli-user"


def _load_config() -> AgentConfig:
    """Load configuration or exit with a readable error."""
    try:
        return load_config()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """fleet-agent CLI."""
    if ctx.invoked_subcommand is None:
        console.print("fleet-agent - Use --help to see available commands")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (defaults to HOST)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Bind port (defaults to PORT)"),
):
    """Run the HTTP server with the heartbeat scheduler."""
    config = _load_config()
    configure_logging(config.log_level)
    try:
        fastapi_app = build_app(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"Starting fleet-agent on port {port or config.port}...")
    uvicorn.run(fastapi_app, host=host or config.host, port=port or config.port, log_config=None)


@app.command()
def init():
    """Initialize the database."""
    config = _load_config()
    try:
        initialize_storage(config.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    agent_id: str = typer.Argument("main", help="Agent to summarize"),
    thread: Optional[str] = typer.Option(None, "--thread", "-t", help="Limit the summary to one thread"),
    recent: int = typer.Option(0, "--recent", "-r", help="Also list the N most recent requests"),
):
    """Show token usage and cost for an agent."""
    config = _load_config()
    try:
        initialize_storage(config.db_path)
        repository = UsageRepository(config.db_path, pricing=config.pricing)
        summary = repository.summarize(agent_id, thread)
        records = repository.fetch_recent_usage_records(agent_id, thread, limit=recent) if recent > 0 else []
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    scope = f"{agent_id} / thread {thread}" if thread else agent_id
    _display_summary(scope, summary)

    if records:
        table = Table(title="Recent requests")
        table.add_column("Time")
        table.add_column("Thread")
        table.add_column("Model")
        table.add_column("Input", justify="right")
        table.add_column("Output", justify="right")
        table.add_column("Cache read", justify="right")
        table.add_column("Cost", justify="right")
        for record in records:
            table.add_row(
                record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                record.thread_id or "-",
                record.model_id,
                f"{record.input_tokens:,}",
                f"{record.output_tokens:,}",
                f"{record.cache_read_tokens:,}",
                _format_cost(record.cost),
            )
        console.print(table)


@app.command()
def heartbeat():
    """Run a single heartbeat tick now."""
    config = _load_config()
    configure_logging(config.log_level)
    try:
        initialize_storage(config.db_path)
        threads = ThreadRepository(config.db_path)
        agent = build_agent(config, threads)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    async def run_tick():
        bus = NotificationBus()
        subscription = bus.subscribe()
        scheduler = HeartbeatScheduler(
            agent=agent,
            bus=bus,
            heartbeat_path=config.heartbeat_path,
            interval=config.heartbeat_interval,
            usage=UsageRepository(config.db_path, pricing=config.pricing),
        )
        outcome = await scheduler.run_once()
        notification = await subscription.get() if outcome == HeartbeatOutcome.NOTIFIED else None
        subscription.close()
        return outcome, notification

    outcome, notification = asyncio.run(run_tick())
    console.print(f"[bold]Heartbeat:[/bold] {outcome.value}")
    if notification is not None:
        console.print(notification.text)
    sys.exit(EXIT_CODE_FAIL if outcome == HeartbeatOutcome.FAILED else EXIT_CODE_PASS)


@app.command()
def chat(
    url: str = typer.Option("http://localhost:4111", "--url", help="Base URL of a running server"),
    agent_id: str = typer.Option("main", "--agent", "-a", help="Agent to talk to"),
    resource: str = typer.Option(CLI_RESOURCE_ID, "--resource", help="Resource id for the session"),
    model: str = typer.Option("unknown", "--model", envvar="AGENT_MODEL", help="Model shown in the usage line"),
):
    """Chat with a running agent from the terminal."""
    api_base = f"{url.rstrip('/')}/api/agents/{agent_id}"
    console.print("fleet-agent CLI")
    console.print('Type your messages, or "exit" to quit.\n')

    with httpx.Client(timeout=300.0) as client:
        try:
            response = client.post(f"{api_base}/memory/threads", json={"resourceId": resource})
            response.raise_for_status()
        except httpx.HTTPError as e:
            console.print(f"[red]Failed to create thread:[/] {e}")
            sys.exit(EXIT_CODE_FAIL)
        thread_id = response.json()["thread"]["id"]

        while True:
            try:
                message = console.input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                break

            if not message:
                continue
            if message.lower() in ("exit", "quit"):
                break

            try:
                response = client.post(f"{api_base}/generate", json={
                    "messages": [{"role": "user", "content": message}],
                    "threadId": thread_id,
                    "resourceId": resource,
                })
                response.raise_for_status()
            except httpx.HTTPError as e:
                console.print(f"[red]Error:[/] {e}\n")
                continue

            result = response.json()
            console.print(f"\nAgent: {result['text']}\n")
            console.print(f"[dim]{_format_usage_line(result.get('usage'), result.get('cost'), model)}[/]\n")

    console.print("Goodbye!")


def _format_cost(cost: Optional[float]) -> str:
    """Format a cost; unknown costs are shown as n/a, not $0."""
    if cost is None:
        return "n/a"
    return f"${cost:,.4f}"


def _format_usage_line(usage: Optional[dict], cost: Optional[float], model: str) -> str:
    usage = usage or {}
    return (
        f"[tokens: {usage.get('inputTokens', 0)} input + {usage.get('outputTokens', 0)} output"
        f" | cost: {_format_cost(cost)} | model: {model}]"
    )


def _display_summary(scope: str, summary: UsageSummary):
    """Display a usage summary in a clean, financial format."""
    console.print(f"\n[bold]Usage for {scope}[/bold]")
    console.print("-" * 40)

    if summary.requests == 0:
        console.print("\n[dim]No usage recorded yet.[/]")
        return

    console.print(f"Requests: {summary.requests:,}")
    console.print(f"Input tokens: {summary.total_input_tokens:,}")
    console.print(f"Output tokens: {summary.total_output_tokens:,}")
    console.print(f"Total tokens: {summary.total_tokens:,}")
    console.print(f"Cache read/write: {summary.total_cache_read_tokens:,} / {summary.total_cache_write_tokens:,}")
    hit_rate = "N/A" if summary.cache_hit_rate is None else f"{summary.cache_hit_rate:.1f}%"
    console.print(f"Cache hit rate: {hit_rate}")
    console.print(f"Total cost: {_format_cost(summary.total_cost)}")
    print()


if __name__ == "__main__":
    app()
