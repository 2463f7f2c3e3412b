"""Logging configuration for bicep-bridge.

The library itself only creates loggers (``logging.getLogger(__name__)``) and
never installs handlers on import. Applications that want the bridge's
output formatted consistently can call configure_logging() once at startup.

Logging Levels:
- DEBUG: Every request/response (method, request id, duration)
- INFO: CLI process start/exit, CLI stderr lines
- WARNING: Forced kills, responses nobody was waiting for
- ERROR: Malformed messages from the CLI
"""

import logging
import os

from bicep_bridge.config import BridgeConfig, load_config

LEVEL_ENV_VAR = "BICEP_BRIDGE_LOG_LEVEL"
_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ComponentFormatter(logging.Formatter):
    """Formatter that extracts component name from logger path.

    Converts full module paths to short component names:
    - bicep_bridge.rpc.connection -> rpc
    - bicep_bridge.subprocess -> subprocess
    - bicep_bridge.client -> client
    """

    def format(self, record: logging.LogRecord) -> str:
        parts = record.name.split(".")
        if len(parts) >= 2 and parts[0] == "bicep_bridge":
            record.component = parts[1]
        else:
            record.component = parts[0]
        return super().format(record)


def resolve_level(
    level: str | None = None, config: BridgeConfig | None = None
) -> str:
    """Pick the log level.

    Order: the argument, BICEP_BRIDGE_LOG_LEVEL, ``log_level`` from the
    config (load_config() when not given), then INFO.
    """
    if level is None:
        level = os.environ.get(LEVEL_ENV_VAR, "").strip() or None
    if level is None:
        if config is None:
            config = load_config()
        level = config.log_level or "INFO"
    level = level.upper()
    if level not in _VALID_LEVELS:
        level = "INFO"
    return level


def configure_logging(
    level: str | None = None,
    use_rich: bool = False,
    config: BridgeConfig | None = None,
) -> None:
    """Configure logging for applications embedding the bridge.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
            If None, uses BICEP_BRIDGE_LOG_LEVEL env var, then the
            config's log_level, then INFO.
        use_rich: Use Rich handler for colorful console output.
        config: Settings to read log_level from. Defaults to load_config().
    """
    log_level = getattr(logging, resolve_level(level, config))

    if use_rich:
        from rich.logging import RichHandler

        handler: logging.Handler = RichHandler(
            rich_tracebacks=False,
            show_path=False,
            show_time=True,
            markup=False,
        )
        handler.setFormatter(ComponentFormatter("%(component)s | %(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            ComponentFormatter(
                "%(asctime)s | %(levelname)-8s | %(component)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )

    logging.basicConfig(
        level=log_level,
        handlers=[handler],
        force=True,
    )

    # asyncio logs slow callbacks and unclosed transports at DEBUG
    logging.getLogger("asyncio").setLevel(max(log_level, logging.INFO))
