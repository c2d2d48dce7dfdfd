"""
CLI interface for Scrollwork.

Runs the agent and queries a running agent over its unix socket.
"""

import asyncio
import dataclasses
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from scrollwork.config.loader import (
    CREDENTIAL_KEYS,
    DEFAULT_SOCKET_PATH,
    AgentConfig,
    RiskThresholdConfig,
    load_agent_config,
)
from scrollwork.core.agent import Agent
from scrollwork.core.errors import ConfigurationError, ScrollworkError
from scrollwork.server.client import is_agent_listening, request_assessment
from scrollwork.server.protocol import ProtocolError

app = typer.Typer()
console = Console()
logger = logging.getLogger(__name__)

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Risk levels that fail `assess --enforced`
ENFORCED_RISK_LEVELS = {"high", "unknown"}

RISK_STYLES = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
    "unknown": "magenta",
}

BANNER = "Scrollwork"


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Scrollwork CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Scrollwork - Use --help to see available commands")


@app.command()
def status(
    socket_path: str = typer.Option(
        DEFAULT_SOCKET_PATH,
        "--socket",
        "-s",
        help="Unix socket path of the agent"
    )
):
    """Check whether a Scrollwork agent is listening."""
    if asyncio.run(is_agent_listening(socket_path)):
        console.print(f"[green]✓[/] Scrollwork agent is listening on {socket_path}")
        sys.exit(EXIT_CODE_PASS)
    console.print(f"[yellow]No Scrollwork agent is listening on {socket_path}[/]")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML configuration file; flags override its values"
    ),
    models: Optional[List[str]] = typer.Option(
        None,
        "--model",
        "-m",
        help="Model to track (repeatable)"
    ),
    api_key: Optional[str] = typer.Option(
        None,
        "--api-key",
        envvar="SCROLLWORK_API_KEY",
        help="Provider API key"
    ),
    admin_key: Optional[str] = typer.Option(
        None,
        "--admin-key",
        envvar="SCROLLWORK_ADMIN_KEY",
        help="Provider admin key for organization usage (defaults to the API key)"
    ),
    anthropic_api_key: Optional[str] = typer.Option(
        None,
        "--anthropic-api-key",
        envvar="SCROLLWORK_ANTHROPIC_API_KEY",
        help="Anthropic API key, required when tracking Anthropic and OpenAI models together"
    ),
    anthropic_admin_key: Optional[str] = typer.Option(
        None,
        "--anthropic-admin-key",
        envvar="SCROLLWORK_ANTHROPIC_ADMIN_KEY",
        help="Anthropic admin key (defaults to the Anthropic API key)"
    ),
    openai_admin_key: Optional[str] = typer.Option(
        None,
        "--openai-admin-key",
        envvar="SCROLLWORK_OPENAI_ADMIN_KEY",
        help="OpenAI admin key, required when tracking Anthropic and OpenAI models together"
    ),
    refresh_rate: Optional[int] = typer.Option(
        None,
        "--refresh-rate",
        "-r",
        help="Refresh rate in minutes for fetching organization usage"
    ),
    low: Optional[float] = typer.Option(None, "--low", help="Low risk threshold"),
    medium: Optional[float] = typer.Option(None, "--medium", help="Medium risk threshold"),
    high: Optional[float] = typer.Option(None, "--high", help="High risk threshold"),
    quota: Optional[int] = typer.Option(
        None,
        "--quota",
        help="Token quota; thresholds become fractions of it"
    ),
    socket_path: Optional[str] = typer.Option(
        None,
        "--socket",
        "-s",
        help="Unix socket path to listen on"
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level")
):
    """
    Run the Scrollwork agent until interrupted.

    The agent verifies provider credentials, fetches current organization
    usage and then accepts assessment requests on its unix socket.
    """
    try:
        config = _build_config(
            config_path=config_path,
            models=models,
            api_key=api_key,
            admin_key=admin_key,
            anthropic_api_key=anthropic_api_key,
            anthropic_admin_key=anthropic_admin_key,
            openai_admin_key=openai_admin_key,
            refresh_rate=refresh_rate,
            low=low,
            medium=medium,
            high=high,
            quota=quota,
            socket_path=socket_path
        )
        _configure_logging(log_level)
    except (ConfigurationError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _print_banner(config)

    try:
        asyncio.run(_serve(Agent(config)))
    except ScrollworkError as e:
        console.print(f"[red]Scrollwork failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    sys.exit(EXIT_CODE_PASS)


@app.command()
def assess(
    prompt: str = typer.Argument(..., help="Prompt text to assess"),
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Target model (defaults to the agent's first model)"
    ),
    socket_path: str = typer.Option(
        DEFAULT_SOCKET_PATH,
        "--socket",
        "-s",
        help="Unix socket path of the agent"
    ),
    enforced: bool = typer.Option(
        False,
        "--enforced",
        "-e",
        help="Exit with error code on high or unknown risk"
    )
):
    """Ask a running agent for the cost risk of a prompt."""
    try:
        response = asyncio.run(request_assessment(socket_path, prompt, model))
    except (OSError, ProtocolError, asyncio.TimeoutError) as e:
        console.print(f"[red]Could not get an assessment from {socket_path}:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if "error" in response:
        console.print(f"[red]Error:[/] {response['error']}")
        sys.exit(EXIT_CODE_FAIL)

    _display_assessment(response)

    if enforced and response.get("riskLevel") in ENFORCED_RISK_LEVELS:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


async def _serve(agent: Agent) -> None:
    """Start and run the agent, then stop it on SIGINT or SIGTERM."""
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        await agent.start()
        await agent.run()
        await stop_requested.wait()
        logger.info("Received shutdown signal. Scrollwork is shutting down...")
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        await agent.stop()


def _build_config(
    config_path: Optional[Path],
    models: Optional[List[str]],
    api_key: Optional[str],
    admin_key: Optional[str],
    anthropic_api_key: Optional[str],
    anthropic_admin_key: Optional[str],
    openai_admin_key: Optional[str],
    refresh_rate: Optional[int],
    low: Optional[float],
    medium: Optional[float],
    high: Optional[float],
    quota: Optional[int],
    socket_path: Optional[str]
) -> AgentConfig:
    """Merge the optional config file with command-line flags."""
    overrides = {
        "models": tuple(models) if models else None,
        "api_key": api_key,
        "admin_key": admin_key,
        "anthropic_api_key": anthropic_api_key,
        "anthropic_admin_key": anthropic_admin_key,
        "openai_admin_key": openai_admin_key,
        "refresh_interval_minutes": refresh_rate,
        "socket_path": socket_path,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}

    threshold_overrides = {"low": low, "medium": medium, "high": high, "quota_tokens": quota}
    threshold_overrides = {key: value for key, value in threshold_overrides.items() if value is not None}

    if config_path is not None:
        config = load_agent_config(str(config_path))
        if threshold_overrides:
            overrides["thresholds"] = dataclasses.replace(config.thresholds, **threshold_overrides)
        return dataclasses.replace(config, **overrides) if overrides else config

    if "models" not in overrides:
        raise ConfigurationError("at least one model is required. Use --model to set it.")
    if not overrides.keys() & {"api_key", *CREDENTIAL_KEYS}:
        raise ConfigurationError("API key is required. Use --api-key to set it.")

    return AgentConfig(thresholds=RiskThresholdConfig(**threshold_overrides), **overrides)


def _configure_logging(level: str) -> None:
    """Route standard logging through rich on stderr."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ConfigurationError(f"Unknown log level: {level}")

    logging.basicConfig(
        level=numeric_level,
        format="%(name)s - %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)]
    )


def _print_banner(config: AgentConfig) -> None:
    console.print(f"\n[bold]{BANNER}[/bold]")
    console.print("Get your AI limits in real time.")
    console.print("-" * 40)
    console.print(f"Models: {', '.join(config.models)}")
    console.print(f"Refresh rate: every {config.refresh_interval_minutes} minute(s)")
    console.print(f"Socket: {config.socket_path}\n")


def _format_tokens(tokens: int) -> str:
    """Format a token count with thousands separators."""
    return f"{tokens:,}"


def _display_assessment(response: dict) -> None:
    """Display an assessment in a compact table."""
    risk = str(response.get("riskLevel", "unknown"))
    style = RISK_STYLES.get(risk, "white")

    table = Table(title="Prompt Cost Risk")
    table.add_column("Model")
    table.add_column("Risk")
    table.add_column("Prompt tokens", justify="right")
    table.add_column("Tokens used", justify="right")
    table.add_row(
        str(response.get("model", "")),
        f"[{style}]{risk.upper()}[/]",
        _format_tokens(int(response.get("promptTokens", 0))),
        _format_tokens(int(response.get("totalTokensUsed", 0)))
    )
    console.print(table)


if __name__ == "__main__":
    app()
