from __future__ import annotations

# Service settings.
#
# Everything is configured from the command line. Branches come either from
# the single-branch flags or from a JSON file:
#
#   [{"id": "main", "max_occupancy": 9, "grace_period_seconds": 600}, ...]

import argparse
import json
from dataclasses import dataclass, field
from pathlib import Path

from .grace import DEFAULT_DEMOTION_PENALTY
from .models import Branch
from .mqtt_topics import DEFAULT_NAMESPACE

MAX_SWEEP_EVERY = 5.0


@dataclass(frozen=True)
class CoordinatorSettings:
    branches: list[Branch] = field(default_factory=list)
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    namespace: str = DEFAULT_NAMESPACE
    sweep_every: float | None = None
    publish_status_every: float = 2.0
    demotion_penalty: int = DEFAULT_DEMOTION_PENALTY
    log_level: str = "INFO"

    def effective_sweep_every(self) -> float:
        """Configured interval, or half the shortest grace period (capped)."""
        if self.sweep_every is not None:
            return self.sweep_every
        if not self.branches:
            return MAX_SWEEP_EVERY
        shortest = min(b.grace_period_seconds for b in self.branches)
        return min(MAX_SWEEP_EVERY, shortest / 2)


def add_mqtt_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--mqtt-host", default="127.0.0.1")
    p.add_argument("--mqtt-port", type=int, default=1883)
    p.add_argument("--namespace", default=DEFAULT_NAMESPACE)


def add_coordinator_args(p: argparse.ArgumentParser) -> None:
    add_mqtt_args(p)
    p.add_argument("--branches-file", type=Path, default=None, help="JSON list of branch objects")
    p.add_argument("--branch-id", default="main-branch")
    p.add_argument("--max-occupancy", type=int, default=9)
    p.add_argument("--grace-period-seconds", type=float, default=600.0)
    p.add_argument("--average-service-minutes", type=float, default=7.0)
    p.add_argument(
        "--exclude-in-service",
        action="store_true",
        help="do not count customers being served towards occupancy",
    )
    p.add_argument("--demotion-penalty", type=int, default=DEFAULT_DEMOTION_PENALTY)
    p.add_argument("--sweep-every", type=float, default=None, help="seconds between grace-period sweeps")
    p.add_argument("--publish-status-every", type=float, default=2.0)
    p.add_argument("--log-level", default="INFO")


def load_branches(path: Path) -> list[Branch]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of branches")
    branches = [Branch.from_dict(item) for item in data]
    ids = [b.id for b in branches]
    if len(set(ids)) != len(ids):
        raise ValueError(f"{path}: duplicate branch ids")
    return branches


def settings_from_args(args: argparse.Namespace) -> CoordinatorSettings:
    if args.branches_file is not None:
        branches = load_branches(args.branches_file)
    else:
        branches = [
            Branch(
                id=args.branch_id,
                max_occupancy=args.max_occupancy,
                grace_period_seconds=args.grace_period_seconds,
                average_service_minutes=args.average_service_minutes,
                exclude_in_service_from_occupancy=args.exclude_in_service,
            )
        ]
    if args.demotion_penalty <= 0:
        raise ValueError("demotion_penalty must be > 0")
    if args.sweep_every is not None and args.sweep_every <= 0:
        raise ValueError("sweep_every must be > 0")
    return CoordinatorSettings(
        branches=branches,
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        sweep_every=args.sweep_every,
        publish_status_every=args.publish_status_every,
        demotion_penalty=args.demotion_penalty,
        log_level=args.log_level,
    )
