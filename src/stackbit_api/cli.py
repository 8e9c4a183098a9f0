from __future__ import annotations

import argparse
import asyncio
import inspect
import json
import logging
import os
import sys
from typing import Any, List, Optional

from stackbit_api.models.project import Subscription
from stackbit_api.tiers.catalog import get_tier_catalog
from stackbit_api.tiers.subscription import tier_summary


def _print_json(payload: Any) -> None:
    json.dump(payload, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def _cmd_tiers_list(_ns: argparse.Namespace) -> int:
    catalog = get_tier_catalog()
    for tier in catalog.iter_tiers():
        flags = []
        if tier.attributes.is_free:
            flags.append("free")
        if tier.attributes.is_trial:
            flags.append(f"trial of {tier.attributes.trial_tier_of}")
        if tier.attributes.downgrades_to:
            flags.append(f"downgrades to {tier.attributes.downgrades_to}")
        suffix = f" ({', '.join(flags)})" if flags else ""
        print(f"{tier.id}\t{tier.name}{suffix}")
    return 0


def _cmd_tiers_show(ns: argparse.Namespace) -> int:
    catalog = get_tier_catalog()
    if ns.tier_id not in catalog:
        print(f"Unknown tier: {ns.tier_id}", file=sys.stderr)
        return 1
    _print_json(tier_summary(Subscription(tier_id=ns.tier_id), catalog))
    return 0


async def _cmd_downgrade_expired(_ns: argparse.Namespace) -> int:
    from stackbit_api.workers.tasks import run_with_engine

    summary = await run_with_engine(lambda engine: engine.auto_downgrade_expired_projects())
    _print_json(summary)
    return 1 if summary["failed"] else 0


async def _cmd_out_of_sync(_ns: argparse.Namespace) -> int:
    from stackbit_api.workers.tasks import run_with_engine

    project_ids = await run_with_engine(
        lambda engine: engine.detect_out_of_sync_paid_projects()
    )
    _print_json(project_ids)
    return 0


async def _cmd_project_tiers(ns: argparse.Namespace) -> int:
    from stackbit_api.storage.mongo import as_object_id
    from stackbit_api.workers.tasks import run_with_engine

    tier_ids = await run_with_engine(
        lambda engine: engine.project_tiers_for_user(as_object_id(ns.user_id))
    )
    _print_json(tier_ids)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackbit-api",
        description="Inspect customer tiers and run subscription maintenance.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING). Defaults to env LOG_LEVEL or INFO.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # ---- tiers ----
    tiers = sub.add_parser("tiers", help="Inspect the tier catalog.")
    tiers_sub = tiers.add_subparsers(dest="tiers_command", required=True)
    tiers_list = tiers_sub.add_parser("list", help="List every configured tier.")
    tiers_list.set_defaults(func=_cmd_tiers_list)
    tiers_show = tiers_sub.add_parser(
        "show", help="Show a tier's resolved features, hooks and trials."
    )
    tiers_show.add_argument("tier_id")
    tiers_show.set_defaults(func=_cmd_tiers_show)

    # ---- subscriptions ----
    subs = sub.add_parser("subscriptions", help="Subscription maintenance (needs MONGO_URI).")
    subs_sub = subs.add_subparsers(dest="subscriptions_command", required=True)
    downgrade = subs_sub.add_parser(
        "downgrade-expired", help="Downgrade projects whose trial or paid period ended."
    )
    downgrade.set_defaults(func=_cmd_downgrade_expired)
    out_of_sync = subs_sub.add_parser(
        "out-of-sync", help="List paid projects past their billing cycle."
    )
    out_of_sync.set_defaults(func=_cmd_out_of_sync)
    project_tiers = subs_sub.add_parser(
        "project-tiers", help="Tiers of the projects a user owns or collaborates on."
    )
    project_tiers.add_argument("--user-id", required=True)
    project_tiers.set_defaults(func=_cmd_project_tiers)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)

    level_name = str(getattr(ns, "log_level", "") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    func = getattr(ns, "func", None)
    if func is None:
        parser.print_help()
        return 2
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(ns))
    return int(func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
