from __future__ import annotations

# Single-entrypoint runner.
#
#     python -m walkin_queue.app serve --max-occupancy 9 --grace-period-seconds 600
#     python -m walkin_queue.app join --branch-id main-branch --name Ada
#     python -m walkin_queue.app confirm --ticket-id <id>

import argparse
import logging
from logging.config import dictConfig

from .client import add_client_commands, run_client
from .config import add_coordinator_args, settings_from_args


def configure_logging(level_name: str = "INFO") -> logging.Logger:
    level = getattr(logging, level_name.upper(), logging.INFO)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "root": {"handlers": ["default"], "level": level},
        }
    )
    return logging.getLogger("walkin_queue")


def main() -> None:
    parser = argparse.ArgumentParser(description="Walk-in Queue Coordinator (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_serve = sub.add_parser("serve", help="Start the coordinator service (grace-period sweep included)")
    add_coordinator_args(p_serve)

    add_client_commands(sub)

    args = parser.parse_args()

    if args.cmd == "serve":
        from .service import run_service

        settings = settings_from_args(args)
        configure_logging(settings.log_level)
        run_service(settings)
        return

    raise SystemExit(run_client(args))


if __name__ == "__main__":
    main()
