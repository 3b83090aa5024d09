#!/usr/bin/env python3
"""
Dispatch CLI: plan runs, print manifests and move data in and out.

Run:
  python scripts/dispatch_cli.py create-run 2025-03-14
  python scripts/dispatch_cli.py list-runs --date 2025-03-14
  python scripts/dispatch_cli.py generate-manifest <run_id>
  python scripts/dispatch_cli.py manifest-pdf <run_id>
  python scripts/dispatch_cli.py mark-complete <run_id> --yes
  python scripts/dispatch_cli.py import-orders data/orders.csv
  python scripts/dispatch_cli.py export tencia
"""
from __future__ import annotations

import sys
from pathlib import Path
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import argparse
import logging
from typing import List, Optional

from bottlerun.db.models import Base
from bottlerun.db.session import get_engine
from bottlerun.ingest.csv_loaders import load_customers_csv, load_orders_csv
from bottlerun.reports.exports import EXPORT_KINDS, export_csv
from bottlerun.reports.manifest_pdf import manifest_filename, render_manifest_pdf
from bottlerun.services.desk import DispatchDesk
from bottlerun.services.errors import DispatchError
from bottlerun.utils.config import load_config, resolve_path
from bottlerun.utils.dates import today_local

logger = logging.getLogger("dispatch_cli")


def _desk() -> DispatchDesk:
    Base.metadata.create_all(get_engine())
    return DispatchDesk.from_config()


def cmd_create_run(args: argparse.Namespace) -> int:
    run = _desk().create_run(args.date)
    print(f"Created {run.label}: {run.id}")
    return 0


def cmd_list_runs(args: argparse.Namespace) -> int:
    desk = _desk()
    runs = desk.list_runs(args.date)
    if not runs:
        print("No runs.")
        return 0
    for run in runs:
        s = desk.run_summary(run.id)
        version = f"v{s['manifest_version']}" if s["manifest_version"] else "no manifest"
        print(
            f"{run.id}  {run.label:<24} {s['status']:<12} "
            f"stops {s['delivered_stops']}/{s['stops']}  "
            f"{desk.policy.capacity_type} {s['capacity_used']}/{desk.policy.run_capacity}  {version}"
        )
    return 0


def cmd_generate_manifest(args: argparse.Namespace) -> int:
    manifest = _desk().generate_manifest(args.run_id)
    snap = manifest.snapshot_data
    print(f"Manifest {manifest.short_id} v{manifest.version}: {snap['totalStops']} stops, {snap['totalBottles']} bottles")
    return 0


def cmd_manifest_pdf(args: argparse.Namespace) -> int:
    desk = _desk()
    manifest = desk.active_manifest(args.run_id)
    if manifest is None:
        history = desk.manifest_history(args.run_id)
        if not history:
            print(f"Run {args.run_id} has no manifest yet.", file=sys.stderr)
            return 1
        manifest = history[-1]
    out_dir = Path(args.out) if args.out else resolve_path(load_config().exports.manifests_dir)
    path = render_manifest_pdf(
        manifest.snapshot_data,
        out_dir / manifest_filename(manifest.snapshot_data, manifest.version),
        version=manifest.version,
        policy=desk.policy,
    )
    print("Manifest PDF written:", path)
    return 0


def cmd_mark_complete(args: argparse.Namespace) -> int:
    run = _desk().mark_run_complete(args.run_id, confirmed=args.yes)
    print(f"{run.label} completed at {run.completed_at.isoformat()}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    desk = _desk()
    loader = load_customers_csv if args.cmd == "import-customers" else load_orders_csv
    result = loader(args.path, desk)
    print(f"Imported {result.imported}, skipped {result.skipped}")
    for line in result.errors:
        print("  -", line)
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    cfg = load_config()
    out_dir = Path(args.out) if args.out else resolve_path(cfg.exports.exports_dir)
    path = export_csv(_desk(), args.kind, out_dir, day=args.date, today=today_local(cfg.app.timezone))
    print("Export written:", path)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Gas bottle dispatch CLI")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("create-run", help="open a new run for a delivery date")
    p.add_argument("date", help="YYYY-MM-DD")
    p.set_defaults(func=cmd_create_run)

    p = sub.add_parser("list-runs", help="runs with capacity and delivery progress")
    p.add_argument("--date", default=None, help="YYYY-MM-DD")
    p.set_defaults(func=cmd_list_runs)

    p = sub.add_parser("generate-manifest", help="(re)generate the run manifest")
    p.add_argument("run_id")
    p.set_defaults(func=cmd_generate_manifest)

    p = sub.add_parser("manifest-pdf", help="print the active manifest to PDF")
    p.add_argument("run_id")
    p.add_argument("--out", default=None, help="output directory")
    p.set_defaults(func=cmd_manifest_pdf)

    p = sub.add_parser("mark-complete", help="close a fully delivered run")
    p.add_argument("run_id")
    p.add_argument("--yes", action="store_true", help="confirm completion")
    p.set_defaults(func=cmd_mark_complete)

    for name in ("import-customers", "import-orders"):
        p = sub.add_parser(name, help=f"{name.replace('-', ' ')} from CSV")
        p.add_argument("path")
        p.set_defaults(func=cmd_import)

    p = sub.add_parser("export", help="write a CSV export")
    p.add_argument("kind", choices=EXPORT_KINDS)
    p.add_argument("--date", default=None, help="YYYY-MM-DD (orders-by-date)")
    p.add_argument("--out", default=None, help="output directory")
    p.set_defaults(func=cmd_export)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, load_config().app.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        return args.func(args)
    except DispatchError as exc:
        print(f"{type(exc).__name__}: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
