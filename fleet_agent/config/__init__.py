from .loader import AgentConfig, ConfigError, MemoryConfig, load_config

__all__ = ["AgentConfig", "ConfigError", "MemoryConfig", "load_config"]
