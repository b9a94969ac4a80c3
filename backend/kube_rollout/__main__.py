from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys

from .adapters import build_controller, build_kube_client
from .config import settings
from .kube_types import RolloutOutcome, WorkloadRef

logger = logging.getLogger("kube_rollout")

EXIT_CODES = {
    RolloutOutcome.SUCCESS: 0,
    RolloutOutcome.ROLLED_BACK: 1,
    RolloutOutcome.PRECONDITION_FAILED: 2,
    RolloutOutcome.ABORTED: 2,
    RolloutOutcome.ROLLBACK_FAILED: 3,
}


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="kube-rollout", description="Roll a deployment to a new image with automatic rollback")
    p.add_argument("--namespace", default=settings.K8S_NAMESPACE)
    p.add_argument("--log-level", default=settings.LOG_LEVEL)
    sub = p.add_subparsers(dest="cmd", required=True)

    s_roll = sub.add_parser("rollout", help="Update the image and verify all pods become ready")
    s_roll.add_argument("--deployment", required=True)
    s_roll.add_argument("--image", required=True)
    s_roll.add_argument("--container", default=None, help="Container name (default: first container)")
    s_roll.add_argument("--timeout", type=float, default=settings.ROLLOUT_TIMEOUT_SECS,
                        help="Seconds to wait for pods to become ready")
    s_roll.add_argument("--poll-interval", type=float, default=settings.ROLLOUT_POLL_INTERVAL_SECS)

    s_status = sub.add_parser("status", help="Show replica counts of a deployment")
    s_status.add_argument("--deployment", required=True)

    args = p.parse_args(argv)
    if args.cmd == "rollout" and (args.timeout <= 0 or args.poll_interval <= 0):
        p.error("--timeout and --poll-interval must be positive")
    logging.basicConfig(level=args.log_level.upper())

    try:
        kube_client = build_kube_client(settings)
    except Exception as e:
        logger.error(f"❌ Cannot connect to Kubernetes: {e}")
        return 2

    if args.cmd == "status":
        status = kube_client.rollout_status(args.deployment, args.namespace)
        _print(dataclasses.asdict(status))
        return 0 if status.status == "ready" else 1

    if args.cmd == "rollout":
        controller = build_controller(
            kube_client,
            settings,
            timeout_s=args.timeout,
            poll_interval_s=args.poll_interval,
            container=args.container,
        )
        result = controller.rollout(WorkloadRef(name=args.deployment, namespace=args.namespace), args.image)
        _print(result.to_dict())
        if result.outcome is RolloutOutcome.ROLLBACK_FAILED:
            print(f"ROLLBACK FAILED: {result.message}", file=sys.stderr)
        return EXIT_CODES[result.outcome]

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
