"""Configuration schemas for process channels and the review loop.

Defaults live in crucible/config/defaults.toml and are loaded by
crucible.config_loader. CLI flags override individual values.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class InputFormat(StrEnum):
    """How a payload is written to a process's stdin.

    TEXT: write the payload and close stdin (one-shot ``--print`` style).
    STREAM_JSON: write one JSON user message per line, stdin stays open.
    """

    TEXT = "text"
    STREAM_JSON = "stream-json"


class ChannelConfig(BaseModel):
    """How to launch and talk to one kind of external process."""

    command: list[str] = Field(
        min_length=1, description="Executable and arguments (argv, no shell)",
    )
    resume_flag: str = Field(
        default="--resume",
        description="Flag placed before a session id to resume a conversation",
    )
    input_format: InputFormat = Field(
        default=InputFormat.TEXT, description="Stdin payload framing",
    )
    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables",
    )
    unset_env: list[str] = Field(
        default_factory=lambda: ["CLAUDECODE"],
        description="Environment variables removed before launch",
    )
    start_timeout: float = Field(
        default=30.0, gt=0, description="Seconds allowed for the process to launch",
    )
    stop_grace: float = Field(
        default=5.0, ge=0, description="Seconds between SIGTERM and SIGKILL",
    )
    line_limit: int = Field(
        default=16 * 1024 * 1024, gt=0,
        description="Maximum length of one output line in bytes",
    )


class LoopConfig(BaseModel):
    """Round budget, timeouts and retry policy for the adversarial loop."""

    max_rounds: int = Field(default=3, ge=1, description="Maximum critique→fix rounds")
    critique_timeout: float = Field(
        default=600.0, gt=0, description="Seconds allowed for one critique pass",
    )
    remediation_timeout: float = Field(
        default=900.0, gt=0, description="Seconds allowed for one remediation pass",
    )
    critique_retries: int = Field(
        default=1, ge=0,
        description="Immediate retries before consecutive critique failures trip the breaker",
    )
    remediation_retries: int = Field(
        default=1, ge=0,
        description="Immediate retries before consecutive remediation failures trip the breaker",
    )
    resume_remediation_session: bool = Field(
        default=True,
        description="Resume the previous round's remediation session instead of starting fresh",
    )


class CrucibleConfig(BaseModel):
    """Top-level configuration."""

    loop: LoopConfig = Field(default_factory=LoopConfig)
    critique: ChannelConfig = Field(
        default_factory=lambda: ChannelConfig(
            command=["codex", "exec", "--json", "--full-auto", "-"],
        ),
        description="Critique (review) process",
    )
    remediation: ChannelConfig = Field(
        default_factory=lambda: ChannelConfig(
            command=[
                "claude", "--print", "--verbose",
                "--output-format", "stream-json",
                "--dangerously-skip-permissions",
            ],
        ),
        description="Remediation (fix) process",
    )
    base_ref: str = Field(default="HEAD", description="Git ref the change set is diffed against")
    persist_history: bool = Field(default=True, description="Record finished runs in SQLite")
    history_db_path: str = Field(
        default="~/.crucible/history.db", description="Run history database path",
    )
