"""
Configuration management and loading.

Builds the process configuration once from environment variables and an
optional YAML price override file. Any missing or invalid value is fatal.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from ..core.pricing import PRICING_TABLE, ModelPrice, PricingTable
from ..core.session import DEFAULT_RESOURCE_ID

DEFAULT_HEARTBEAT_INTERVAL = 1800
DEFAULT_LAST_MESSAGES = 20
DEFAULT_CONSOLIDATION_THRESHOLD = 85
DEFAULT_PORT = 4111
DEFAULT_HOST = "0.0.0.0"
DEFAULT_AGENT_ID = "main"
DEFAULT_AGENT_NAME = "Main Agent"
PRICES_FILENAME = "prices.yaml"
HEARTBEAT_FILENAME = "HEARTBEAT.md"


class ConfigError(ValueError):
    """Raised when the process configuration is missing or invalid."""


@dataclass(frozen=True)
class MemoryConfig:
    """Conversation memory limits."""
    last_messages: int = DEFAULT_LAST_MESSAGES
    consolidation_threshold: int = DEFAULT_CONSOLIDATION_THRESHOLD

    def __post_init__(self):
        """Validate limits are positive."""
        if self.last_messages < 1:
            raise ConfigError("MEMORY_LAST_MESSAGES must be a positive integer")
        if self.consolidation_threshold < 1:
            raise ConfigError("MEMORY_CONSOLIDATION_THRESHOLD must be a positive integer")

    def to_dict(self) -> Dict[str, int]:
        return {
            "lastMessages": self.last_messages,
            "consolidationThreshold": self.consolidation_threshold,
        }


@dataclass(frozen=True)
class AgentConfig:
    """Complete process configuration, constructed once at startup."""
    model: str
    workspace: Path
    db_path: str
    heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    agent_id: str = DEFAULT_AGENT_ID
    agent_name: str = DEFAULT_AGENT_NAME
    default_resource_id: str = DEFAULT_RESOURCE_ID
    pricing: PricingTable = PRICING_TABLE
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate required values."""
        if not self.model or not self.model.strip():
            raise ConfigError("AGENT_MODEL is required and cannot be empty")
        if not self.db_path or not self.db_path.strip():
            raise ConfigError("MEMORY_DB_PATH is required and cannot be empty")
        if self.heartbeat_interval <= 0:
            raise ConfigError("HEARTBEAT_INTERVAL must be > 0")
        if not 0 < self.port < 65536:
            raise ConfigError("PORT must be between 1 and 65535")

    @property
    def heartbeat_path(self) -> Path:
        return self.workspace / HEARTBEAT_FILENAME


def load_config(environ: Optional[Mapping[str, str]] = None) -> AgentConfig:
    """Load and validate configuration from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Validated AgentConfig

    Raises:
        ConfigError: If a required variable is missing or a value is invalid
    """
    env = os.environ if environ is None else environ

    model = _require(env, "AGENT_MODEL")
    workspace = Path(_require(env, "AGENT_WORKSPACE"))
    db_path = _require(env, "MEMORY_DB_PATH")

    memory = MemoryConfig(
        last_messages=_positive_int(env, "MEMORY_LAST_MESSAGES", DEFAULT_LAST_MESSAGES),
        consolidation_threshold=_positive_int(
            env, "MEMORY_CONSOLIDATION_THRESHOLD", DEFAULT_CONSOLIDATION_THRESHOLD
        ),
    )

    prices_file = env.get("PRICES_FILE")
    if prices_file:
        pricing = PRICING_TABLE.with_overrides(load_price_overrides(prices_file))
    elif (workspace / PRICES_FILENAME).exists():
        pricing = PRICING_TABLE.with_overrides(load_price_overrides(str(workspace / PRICES_FILENAME)))
    else:
        pricing = PRICING_TABLE

    return AgentConfig(
        model=model,
        workspace=workspace,
        db_path=db_path,
        heartbeat_interval=_positive_int(env, "HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL),
        memory=memory,
        host=env.get("HOST") or DEFAULT_HOST,
        port=_positive_int(env, "PORT", DEFAULT_PORT),
        agent_id=env.get("AGENT_ID") or DEFAULT_AGENT_ID,
        agent_name=env.get("AGENT_NAME") or DEFAULT_AGENT_NAME,
        pricing=pricing,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )


def load_price_overrides(path: str) -> Dict[str, ModelPrice]:
    """Load and validate model price overrides from a YAML file.

    Expected layout:

        models:
          claude-sonnet-4-6:
            input_per_million: 3.0
            output_per_million: 15.0

    Args:
        path: Path to YAML prices file

    Returns:
        Mapping of lowercased model key to ModelPrice

    Raises:
        ConfigError: If the file is missing, not valid YAML or malformed
    """
    prices_path = Path(path)
    if not prices_path.exists():
        raise ConfigError(f"Prices file not found: {path}")

    with open(prices_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in prices file {path}: {e}")

    if not raw_config:
        raise ConfigError("Prices file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigError("Prices file must contain a mapping")

    unknown_keys = set(raw_config.keys()) - {'models'}
    if unknown_keys:
        raise ConfigError(f"Unknown prices keys: {unknown_keys}")

    models_data = raw_config.get('models')
    if not isinstance(models_data, dict) or not models_data:
        raise ConfigError("'models' must be a non-empty dictionary")

    overrides = {}
    for model_key, price_data in models_data.items():
        if not isinstance(price_data, dict):
            raise ConfigError(f"Model '{model_key}' must be a dictionary")
        overrides[str(model_key).lower()] = _parse_model_price(price_data, f"models.{model_key}")
    return overrides


def _parse_model_price(data: Dict, path: str) -> ModelPrice:
    """Parse and validate one price entry.

    Args:
        data: Price entry data
        path: Path for error messages

    Returns:
        Validated ModelPrice

    Raises:
        ConfigError: If the entry is invalid
    """
    allowed_keys = {'input_per_million', 'output_per_million'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigError(f"Unknown keys in {path}: {unknown_keys}")

    rates = {}
    for key in sorted(allowed_keys):
        if key not in data:
            raise ConfigError(f"Missing required '{key}' in {path}")
        value = data[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"'{key}' in {path} must be a number")
        try:
            rate = Decimal(str(value))
        except InvalidOperation:
            raise ConfigError(f"'{key}' in {path} must be a number")
        if rate < 0:
            raise ConfigError(f"'{key}' in {path} must be >= 0")
        rates[key] = rate

    return ModelPrice(
        input_per_million=rates['input_per_million'],
        output_per_million=rates['output_per_million']
    )


def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name)
    if not value or not value.strip():
        raise ConfigError(f"{name} environment variable is required")
    return value.strip()


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be a positive integer")
    if parsed < 1:
        raise ConfigError(f"{name} must be a positive integer")
    return parsed
