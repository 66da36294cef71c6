"""
Configuration management for agent-loop

Uses pydantic-settings for environment variable parsing and validation.
Per-conversation state (token totals, run timestamps) lives in the
conversation directory's config.json, not here.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = """You are a careful coding assistant working inside the user's project directory.

You can use these tools:
- read_file: read a file inside the project
- write_file: write a file inside the project (the user sees a diff first)
- bash_command: run a whitelisted, read-only shell command

Guidelines:
1. Read before you write; keep changes small and focused
2. Explain the reason for every command you run
3. Paths outside the project directory are rejected
4. If a tool reports a dry-run, describe what you would have done and stop"""


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "agent-loop"
    log_level: str = "WARNING"
    verbosity: Literal["silent", "normal", "verbose", "debug"] = "normal"

    # Providers
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    anthropic_base_url: str | None = Field(default=None, description="Override for the Anthropic endpoint")
    ollama_url: str = Field(default="http://localhost:11434", description="Ollama API URL")

    # Default model settings
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = Field(default=8192, description="Maximum tokens per provider call")
    timeout_seconds: float = Field(default=300.0, description="Provider request timeout")

    # Budget (0 means unlimited)
    max_cost: float = Field(default=1.0, description="Maximum cost in dollars per turn")
    max_iterations: int = Field(default=15, description="Maximum agentic loop iterations")
    max_context_tokens: int = Field(default=100_000, description="Refuse to send larger histories")

    # Conversation
    conversation_dir: str = Field(default="", description="Directory holding .claude/ (default: cwd)")
    truncate: int = Field(default=0, description="Keep only the last N history messages (0 = all)")
    agent_system_prompt: str = Field(default="", description="Session-level system prompt override")

    # Tools
    tool: str = Field(default="", description='Tool permissions: "" (dry-run), none, read, write, command, all')
    command_timeout_seconds: float = Field(default=30.0, description="bash_command wall-clock bound")

    # Output
    output: Literal["text", "json"] = "text"
    output_file: str = ""

    @field_validator("tool", mode="before")
    @classmethod
    def normalize_tool(cls, v: str | None) -> str:
        return (v or "").strip().lower()

    @property
    def claude_dir(self) -> Path:
        """Directory holding conversation artifacts."""
        base = Path(self.conversation_dir) if self.conversation_dir else Path.cwd()
        return base / ".claude"

    @property
    def wants_json(self) -> bool:
        return self.output == "json"

    @property
    def effective_log_level(self) -> str:
        """Log level implied by verbosity, unless log_level was raised explicitly."""
        level_map = {
            "silent": "ERROR",
            "normal": self.log_level.upper(),
            "verbose": "INFO",
            "debug": "DEBUG",
        }
        return level_map[self.verbosity]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
