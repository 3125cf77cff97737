"""Centralized logging configuration for Keeper.

All entry points should call configure_logging() early.

Events are logged with a short snake_case message and their fields in
``extra``, e.g. ``logger.info("tool_executed", extra={"tool.name": ...})``.
The console formatters append the fields as ``key=value`` pairs; the JSONL
handler stores them under ``"extra"``.

Logging Levels:
- DEBUG: Frame-level transport detail, cache hits, worker stderr
- INFO: Tool executions, agent turns, context builds
- WARNING: Recoverable issues, retries, dropped tool calls, failed layers
- ERROR: Failures that affect operation
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TextIO

# Default retention period for log files
DEFAULT_LOG_RETENTION_DAYS = 7

# Default patterns for secret detection and redaction
DEFAULT_REDACT_PATTERNS: list[str] = [
    # API key prefixes (OpenAI, Anthropic, OpenRouter, GitHub, etc.)
    r"\b(sk-[A-Za-z0-9_-]{20,})\b",
    r"\b(ghp_[A-Za-z0-9]{20,})\b",
    r"\b(github_pat_[A-Za-z0-9_]{20,})\b",
    r"\b(gsk_[A-Za-z0-9_-]{10,})\b",
    r"\b(AIza[0-9A-Za-z\-_]{20,})\b",
    # ENV-style assignments: API_KEY=secret or API_KEY: secret
    r"\b[A-Z0-9_]+(?:KEY|TOKEN|SECRET|PASSWORD|PASSWD)\s*[=:]\s*([^\s\"']{8,})",
    # Bearer tokens in headers
    r"\bBearer\s+([A-Za-z0-9._\-+=]{20,})\b",
]

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "component", "taskName"}


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed to the logging call through ``extra``."""
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


@dataclass
class SecretRedactor:
    """Redacts sensitive information from log messages.

    Patterns match common secret formats (API keys, tokens, passwords)
    and replace them with partially masked versions for debuggability.
    """

    patterns: list[re.Pattern[str]] = field(default_factory=list)
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.patterns:
            self.patterns = [re.compile(p, re.IGNORECASE) for p in DEFAULT_REDACT_PATTERNS]

    def redact(self, text: str) -> str:
        """Redact secrets from text, preserving partial info for debugging."""
        if not self.enabled or not text:
            return text
        result = text
        for pattern in self.patterns:
            result = pattern.sub(self._mask_match, result)
        return result

    def _mask_match(self, match: re.Match[str]) -> str:
        full = match.group(0)
        token = match.group(1) if match.lastindex else full

        # Already masked
        if "..." in token:
            return full

        if len(token) < 12:
            return full.replace(token, "***") if token != full else "***"

        masked = f"{token[:4]}...{token[-4:]}"
        return full.replace(token, masked) if token != full else masked


_redactor = SecretRedactor()


def prune_old_logs(
    logs_dir: Path,
    retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
    suffix: str = ".jsonl",
) -> int:
    """Delete log files older than retention period.

    Returns:
        Number of files deleted.
    """
    if not logs_dir.exists():
        return 0

    cutoff = datetime.now(UTC) - timedelta(days=retention_days)
    deleted = 0

    for entry in logs_dir.iterdir():
        if not entry.is_file() or not entry.name.endswith(suffix):
            continue
        try:
            mtime = datetime.fromtimestamp(entry.stat().st_mtime, UTC)
            if mtime < cutoff:
                entry.unlink()
                deleted += 1
        except OSError:
            continue

    return deleted


def _component(name: str) -> str:
    parts = name.split(".")
    if len(parts) >= 2 and parts[0] == "keeper":
        return parts[1]
    return parts[0]


class JSONLHandler(logging.Handler):
    """Handler that writes structured log entries to a JSONL file.

    Logs are written to $KEEPER_HOME/logs/YYYY-MM-DD.jsonl with one JSON
    object per line, rotated daily, with secrets redacted and files older
    than the retention period pruned on rotation.
    """

    def __init__(
        self,
        logs_dir: Path,
        retention_days: int = DEFAULT_LOG_RETENTION_DAYS,
    ):
        super().__init__()
        self._logs_dir = logs_dir
        self._logs_dir.mkdir(parents=True, exist_ok=True)
        self._retention_days = retention_days
        self._current_date: str | None = None
        self._file: TextIO | None = None

    def _get_log_file(self) -> TextIO:
        """Get the current log file, rotating daily."""
        today = datetime.now(UTC).strftime("%Y-%m-%d")
        if self._current_date != today or self._file is None:
            if self._file:
                self._file.close()
            self._current_date = today
            log_path = self._logs_dir / f"{today}.jsonl"
            self._file = log_path.open("a", encoding="utf-8")

            prune_old_logs(self._logs_dir, self._retention_days)

        return self._file

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry: dict[str, Any] = {
                "ts": datetime.now(UTC).isoformat(),
                "level": record.levelname,
                "component": _component(record.name),
                "logger": record.name,
                "message": _redactor.redact(record.getMessage()),
            }

            if record.exc_info:
                formatter = self.formatter or logging.Formatter()
                entry["exception"] = _redactor.redact(formatter.formatException(record.exc_info))

            if extras := record_extras(record):
                redacted = _redactor.redact(json.dumps(extras, default=str))
                try:
                    entry["extra"] = json.loads(redacted)
                except json.JSONDecodeError:
                    # Redaction broke JSON structure - use raw redacted string
                    entry["extra"] = {"_redacted_raw": redacted}

            log_file = self._get_log_file()
            log_file.write(json.dumps(entry) + "\n")
            log_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None
        super().close()


class EventFormatter(logging.Formatter):
    """Formatter that appends ``extra`` fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        extras = record_extras(record)
        if not extras:
            return text
        fields = " ".join(f"{k}={v}" for k, v in extras.items())
        return f"{text} {fields}"


class ComponentFormatter(EventFormatter):
    """Formatter that extracts component name from logger path.

    - keeper.rpc.client -> rpc
    - keeper.core.agent -> core
    """

    def format(self, record: logging.LogRecord) -> str:
        record.component = _component(record.name)
        return super().format(record)


# Third-party loggers that are too noisy at INFO level
NOISY_LOGGERS = [
    "httpx",  # HTTP client used by Anthropic/OpenAI
    "httpcore",  # httpx dependency
    "anthropic",  # Anthropic SDK
    "openai",  # OpenAI SDK
    "filelock",
]


def configure_logging(
    level: str | None = None,
    use_rich: bool = False,
    log_to_file: bool = False,
) -> None:
    """Configure logging for Keeper.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
            If None, uses KEEPER_LOG_LEVEL env var or INFO.
        use_rich: Use Rich handler for colorful output.
        log_to_file: Also write logs to JSONL files in $KEEPER_HOME/logs/.
    """
    from keeper.config.paths import get_logs_path

    if level is None:
        level = os.environ.get("KEEPER_LOG_LEVEL", "INFO").upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            level = "INFO"

    log_level = getattr(logging, level.upper())

    handlers: list[logging.Handler] = []

    if use_rich:
        from rich.logging import RichHandler

        console_handler: logging.Handler = RichHandler(
            rich_tracebacks=False,
            show_path=False,
            show_time=True,
            markup=False,
        )
        console_handler.setFormatter(ComponentFormatter("%(component)s | %(message)s"))
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            EventFormatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    handlers.append(console_handler)

    if log_to_file:
        file_handler = JSONLHandler(get_logs_path())
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
