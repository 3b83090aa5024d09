"""
Manifest versioning.

Every `generate` call supersedes the run's ACTIVE manifest (if any) and writes a
new ACTIVE one holding a frozen copy of the run's stops. Snapshots are never
touched again; only the status/superseded_at fields move afterwards.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from bottlerun.db.models import Manifest, ManifestStatus, Order, Run, as_utc, new_id, utcnow
from bottlerun.db.repository import Repositories
from bottlerun.services.bottles import BottlePolicy, format_breakdown, sum_breakdown
from bottlerun.services.events import ManifestGenerated, record
from bottlerun.services.status import can_transition_manifest, ensure_unlocked, touch
from bottlerun.utils.dates import format_day

logger = logging.getLogger(__name__)

UNKNOWN_CUSTOMER = "Unknown"


def set_manifest_status(manifest: Manifest, target: ManifestStatus) -> None:
    if not can_transition_manifest(manifest.status, target):
        raise ValueError(f"Manifest {manifest.id} cannot move from {manifest.status.value} to {target.value}")
    manifest.status = target


class ManifestEngine:
    def __init__(self, repos: Repositories, policy: BottlePolicy) -> None:
        self.repos = repos
        self.policy = policy

    def stops_for(self, run: Run) -> List[Order]:
        """Orders attached to the run, in the order they were attached."""
        attached = {o.id: o for o in self.repos.orders.for_run(run.id)}
        ordered = [attached.pop(oid) for oid in run.order_ids if oid in attached]
        # rows attached without going through order_ids (legacy data) go last
        ordered.extend(sorted(attached.values(), key=lambda o: as_utc(o.created_at)))
        return ordered

    def build_snapshot(self, run: Run) -> Dict[str, Any]:
        orders = self.stops_for(run)
        stops = []
        for number, order in enumerate(orders, start=1):
            customer = self.repos.customers.get_by_id(order.customer_id)
            stops.append(
                {
                    "stopNumber": number,
                    "customerName": customer.name if customer else UNKNOWN_CUSTOMER,
                    "address": customer.address if customer else "",
                    "mobile": customer.mobile if customer else "",
                    "bottleBreakdown": format_breakdown(order.bottles or {}, self.policy),
                    "quantity": order.total_bottle_count,
                    "notes": order.notes or "",
                    "invoiceNumber": order.invoice_number or "",
                }
            )
        breakdown = sum_breakdown((o.bottles or {} for o in orders), self.policy)
        snapshot = {
            "runId": run.id,
            "deliveryDate": format_day(run.delivery_date),
            "runNumber": run.run_number,
            "stops": stops,
            "totalStops": len(stops),
            "totalBottles": sum(stop["quantity"] for stop in stops),
            "breakdown": breakdown,
        }
        return copy.deepcopy(snapshot)

    def generate(self, run_id: str) -> Manifest:
        run = self.repos.runs.require(run_id)
        ensure_unlocked(run)
        touch(run)

        now = utcnow()
        previous = self.repos.manifests.active_for_run(run.id)
        if previous is not None:
            set_manifest_status(previous, ManifestStatus.SUPERSEDED)
            previous.superseded_at = now
            self.repos.manifests.upsert(previous)

        version = len(self.repos.manifests.for_run(run.id)) + 1
        manifest = Manifest(
            id=new_id(),
            run_id=run.id,
            version=version,
            status=ManifestStatus.ACTIVE,
            generated_at=now,
            snapshot_data=self.build_snapshot(run),
        )
        self.repos.manifests.upsert(manifest)
        run.manifest_id = manifest.id
        self.repos.runs.upsert(run)

        record(
            self.repos.session,
            ManifestGenerated(run.id, manifest.id, version, previous.id if previous is not None else None),
        )
        logger.info(
            "Manifest v%d for run %s: %d stops, %d bottles",
            version,
            run.label,
            manifest.snapshot_data["totalStops"],
            manifest.snapshot_data["totalBottles"],
        )
        return manifest

    def active_for_run(self, run_id: str) -> Optional[Manifest]:
        self.repos.runs.require(run_id)
        return self.repos.manifests.active_for_run(run_id)

    def history(self, run_id: str) -> List[Manifest]:
        self.repos.runs.require(run_id)
        return self.repos.manifests.for_run(run_id)

    def generated_runs(self) -> List[Run]:
        """Runs with an ACTIVE manifest, newest date first, then by run number."""
        runs = [m.run for m in self.repos.manifests.active()]
        runs.sort(key=lambda r: r.run_number)
        runs.sort(key=lambda r: r.delivery_date, reverse=True)
        return runs


__all__ = ["ManifestEngine", "set_manifest_status"]
