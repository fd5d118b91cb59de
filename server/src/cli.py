from __future__ import annotations

import argparse
import logging
import logging.config
import os
import sys
import time
from copy import deepcopy
from typing import Any, Dict

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from server.src.core.logging import get_logger

from .config import Settings
from .core.app import create_app
from .errors import ConfigurationError


logger = get_logger(__name__)


def _sanitize_logger_override_pair(name: str, level: str) -> tuple[str, str] | None:
    """Strip quotes/whitespace and validate the level. Returns (name, level)
    upper-cased level on success or None on invalid input.
    """
    name = name.strip().strip('"').strip("'")
    level = level.strip().strip('"').strip("'").upper()
    if not isinstance(logging.getLevelName(level), int):
        logger.warning("Skipping invalid log level '%s' for logger '%s'", level, name)
        return None
    return name, level


def _apply_logger_override(log_config: dict, raw: str) -> None:
    """Parse a raw NAME:LEVEL string and set it on log_config if valid."""
    if ":" not in raw:
        return
    name, level = raw.split(":", 1)
    sanitized = _sanitize_logger_override_pair(name, level)
    if sanitized is None:
        return
    name, level = sanitized
    log_config.setdefault("loggers", {}).setdefault(name, {})["level"] = level


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TurtleCoin public node monitor")
    parser.add_argument("--host", dest="host", help="API host binding override")
    parser.add_argument("--port", dest="port", type=int, help="API port binding override")
    parser.add_argument(
        "--log-level", dest="log_level", help="Override the API log level (info, debug, ...)",
    )
    parser.add_argument(
        "--log",
        dest="log_overrides",
        action="append",
        default=[],
        help="Per-logger override in NAME:LEVEL form (repeatable). CLI overrides take precedence over NODEMON_LOG_OVERRIDES.",
    )
    parser.add_argument(
        "--polling-interval", dest="polling_interval", type=float, help="Seconds between node polling cycles",
    )
    parser.add_argument(
        "--update-interval", dest="update_interval", type=float, help="Seconds between node list refreshes",
    )
    parser.add_argument(
        "--history-days", dest="history_days", type=float, help="Days of polling history to retain",
    )
    parser.add_argument("--node-list", dest="node_list_url", help="URL of the public node directory JSON")
    parser.add_argument(
        "--no-collector",
        dest="no_collector",
        action="store_true",
        help="Serve the read API without polling nodes",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    base = Settings()
    overrides: Dict[str, Any] = {}

    if args.host:
        overrides["api_host"] = args.host
    if args.port:
        overrides["api_port"] = args.port
    if args.log_level:
        overrides["api_log_level"] = args.log_level
    # Only positive values override, matching the env merge rule.
    for key in ("polling_interval", "update_interval", "history_days"):
        value = getattr(args, key, None)
        if value is not None and value > 0:
            overrides[key] = value
    if getattr(args, "node_list_url", None):
        overrides["node_list_url"] = args.node_list_url

    if overrides:
        return base.model_copy(update=overrides)
    return base


def build_log_config(settings: Settings, cli_overrides: list[str]) -> dict:
    log_config = deepcopy(LOGGING_CONFIG)
    desired_level = settings.api_log_level.upper()

    log_config.setdefault("root", {"level": desired_level, "handlers": ["default"]})
    log_config.setdefault("loggers", {})

    log_config["root"]["level"] = desired_level
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger_cfg = log_config["loggers"].setdefault(
            logger_name,
            {
                "handlers": ["default"],
                "level": desired_level,
                "propagate": logger_name != "uvicorn.access",
            },
        )
        logger_cfg["level"] = desired_level

    # Use UTC for asctime in log output
    logging.Formatter.converter = time.gmtime

    asctime_token = "%(asctime)s.%(msecs)03d"
    datefmt = "%Y-%m-%d %H:%M:%S"

    for fmt in log_config.get("formatters", {}).values():
        fmt_str = fmt.get("fmt")
        if not fmt_str:
            continue
        if ("%(asctime)s" in fmt_str or asctime_token in fmt_str) and "%(name)s" in fmt_str:
            fmt.setdefault("datefmt", datefmt)
            continue

        # uvicorn formatters use %(levelprefix)s and may lack a timestamp or
        # logger name; rewrite them to start with both.
        if "%(message)s" in fmt_str:
            if "%(asctime)s" not in fmt_str and asctime_token not in fmt_str:
                fmt_str = asctime_token + " " + fmt_str
            if "%(name)s" not in fmt_str:
                fmt_str = fmt_str.replace("%(message)s", "%(name)s: %(message)s")
        elif "%(levelprefix)s" in fmt_str or "%(levelname)s" in fmt_str:
            level_token = "%(levelprefix)s" if "%(levelprefix)s" in fmt_str else "%(levelname)s"
            parts = fmt_str.split(level_token, 1)
            after = parts[1].lstrip() if len(parts) > 1 else ""
            prefix = asctime_token + " " + level_token + " %(name)s: "
            fmt_str = prefix + parts[0].rstrip() + (" " + after if after else "")

        fmt["fmt"] = fmt_str
        fmt.setdefault("datefmt", datefmt)

    # NODEMON_LOG_OVERRIDES is a comma-separated list like: "sqlalchemy.engine:WARNING,services:DEBUG"
    env_overrides = os.getenv("NODEMON_LOG_OVERRIDES", "")
    if env_overrides:
        for raw in [p.strip() for p in env_overrides.split(",") if p.strip()]:
            _apply_logger_override(log_config, raw)

    for pair in cli_overrides or []:
        _apply_logger_override(log_config, pair)

    return log_config


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = build_settings(args)

    log_config = build_log_config(settings, args.log_overrides)
    logging.config.dictConfig(log_config)

    try:
        settings.resolved_database_url()
    except ConfigurationError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)

    if not settings.is_production:
        logger.warning(
            "Not running in production mode. Consider running in production mode: export NODEMON_ENV=production"
        )

    logger.info(
        "Starting API on %s:%s using the %s backend (node list %s)",
        settings.api_host,
        settings.api_port,
        settings.db_backend,
        settings.node_list_url,
    )

    app = create_app(settings, start_collector=not args.no_collector)

    try:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.api_log_level,
            log_config=log_config,
        )
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")


if __name__ == "__main__":
    main()
