"""Runtime configuration for the skill bridge."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class ExecutionSettings:
    """Skill CLI invocation settings."""

    cli_path: str = "iflow"
    timeout_seconds: int = 300
    max_attempts: int = 3
    retry_base_seconds: float = 1.0
    yolo_mode: bool = True
    session_env_key: str = "IFLOW_SESSION_ID"
    kill_grace_seconds: float = 2.0


@dataclass(slots=True)
class LoopSettings:
    """Automatic continuation and escalation policy."""

    max_loop_depth: int = 100
    low_confidence_threshold: float = 0.3
    auto_continue: bool = True


@dataclass(slots=True)
class ProgressSettings:
    """Progress summary settings."""

    interval_seconds: int = 180
    enabled: bool = True


@dataclass(slots=True)
class SessionSettings:
    """Conversation lifetime and optional persistence."""

    idle_timeout_seconds: int = 3600
    db_path: Path | None = None


@dataclass(slots=True)
class SenderSettings:
    """Outbound delivery settings."""

    webhook_url: str | None = None
    request_timeout_seconds: float = 10.0


@dataclass(slots=True)
class LoggingSettings:
    level: str = "INFO"
    log_dir: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)
    progress: ProgressSettings = field(default_factory=ProgressSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    sender: SenderSettings = field(default_factory=SenderSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local development."""

        return cls(
            execution=ExecutionSettings(
                cli_path=os.getenv("SKILL_BRIDGE_CLI_PATH", "iflow"),
                timeout_seconds=int(os.getenv("SKILL_BRIDGE_TIMEOUT_PER_STEP", "300")),
                max_attempts=int(os.getenv("SKILL_BRIDGE_MAX_ATTEMPTS", "3")),
                retry_base_seconds=float(os.getenv("SKILL_BRIDGE_RETRY_BASE_SECONDS", "1.0")),
                yolo_mode=_env_bool("SKILL_BRIDGE_YOLO_MODE", default=True),
                session_env_key=os.getenv("SKILL_BRIDGE_SESSION_ENV_KEY", "IFLOW_SESSION_ID"),
                kill_grace_seconds=float(os.getenv("SKILL_BRIDGE_KILL_GRACE_SECONDS", "2.0")),
            ),
            loop=LoopSettings(
                max_loop_depth=int(os.getenv("SKILL_BRIDGE_MAX_LOOP_DEPTH", "100")),
                low_confidence_threshold=float(
                    os.getenv("SKILL_BRIDGE_LOW_CONFIDENCE_THRESHOLD", "0.3"),
                ),
                auto_continue=_env_bool("SKILL_BRIDGE_AUTO_CONTINUE", default=True),
            ),
            progress=ProgressSettings(
                interval_seconds=int(os.getenv("SKILL_BRIDGE_PROGRESS_INTERVAL", "180")),
                enabled=_env_bool("SKILL_BRIDGE_PROGRESS_ENABLED", default=True),
            ),
            session=SessionSettings(
                idle_timeout_seconds=int(os.getenv("SKILL_BRIDGE_SESSION_TIMEOUT", "3600")),
                db_path=_env_path("SKILL_BRIDGE_SESSION_DB"),
            ),
            sender=SenderSettings(
                webhook_url=os.getenv("SKILL_BRIDGE_WEBHOOK_URL", "").strip() or None,
                request_timeout_seconds=float(
                    os.getenv("SKILL_BRIDGE_WEBHOOK_TIMEOUT_SECONDS", "10.0"),
                ),
            ),
            logging=LoggingSettings(
                level=os.getenv("SKILL_BRIDGE_LOG_LEVEL", "INFO").strip().upper(),
                log_dir=_env_path("SKILL_BRIDGE_LOG_DIR"),
            ),
        )

    def validate(self) -> None:  # noqa: C901
        """Raise configuration error for values the bridge cannot run with."""

        if not self.execution.cli_path.strip():
            raise ValueError("SKILL_BRIDGE_CLI_PATH must not be empty.")
        if self.execution.timeout_seconds <= 0:
            raise ValueError("SKILL_BRIDGE_TIMEOUT_PER_STEP must be > 0.")
        if self.execution.max_attempts < 1:
            raise ValueError("SKILL_BRIDGE_MAX_ATTEMPTS must be >= 1.")
        if self.execution.retry_base_seconds < 0:
            raise ValueError("SKILL_BRIDGE_RETRY_BASE_SECONDS must be >= 0.")
        if self.loop.max_loop_depth < 1:
            raise ValueError("SKILL_BRIDGE_MAX_LOOP_DEPTH must be >= 1.")
        if not 0.0 <= self.loop.low_confidence_threshold <= 1.0:
            raise ValueError("SKILL_BRIDGE_LOW_CONFIDENCE_THRESHOLD must be within [0, 1].")
        if self.progress.interval_seconds <= 0:
            raise ValueError("SKILL_BRIDGE_PROGRESS_INTERVAL must be > 0.")
        if self.session.idle_timeout_seconds <= 0:
            raise ValueError("SKILL_BRIDGE_SESSION_TIMEOUT must be > 0.")
        if self.sender.webhook_url is not None:
            parsed = urlparse(self.sender.webhook_url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "Invalid SKILL_BRIDGE_WEBHOOK_URL: "
                    f"{self.sender.webhook_url!r}. Expected an absolute http(s) URL.",
                )
        if not isinstance(logging.getLevelName(self.logging.level), int):
            raise ValueError(f"Invalid SKILL_BRIDGE_LOG_LEVEL: {self.logging.level!r}")


def _env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
