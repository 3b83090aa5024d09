"""
Render a run manifest snapshot to a printable A4 PDF for the driver.

Works from `snapshot_data` only, so a re-print always matches what was
dispatched even if orders were edited afterwards.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from bottlerun.services.bottles import DEFAULT_POLICY, BottlePolicy, format_breakdown

ROWS_PER_PAGE = 18
LINE_HEIGHT = 6 * mm


def _clip(text: object, limit: int) -> str:
    value = str(text or "")
    return value if len(value) <= limit else value[: limit - 1] + "…"


def manifest_filename(snapshot: Mapping[str, Any], version: Optional[int] = None) -> str:
    name = f"manifest_{snapshot.get('deliveryDate', 'undated')}_run{snapshot.get('runNumber', 0)}"
    if version is not None:
        name += f"_v{version}"
    return name + ".pdf"


def _header(c: canvas.Canvas, snapshot: Mapping[str, Any], version: Optional[int], page: int, y: float) -> float:
    title = f"Delivery Manifest - {snapshot.get('deliveryDate', '')} Run {snapshot.get('runNumber', '')}"
    if version is not None:
        title += f" (v{version})"
    c.setFont("Helvetica-Bold", 14)
    c.drawString(15 * mm, y, title)
    c.setFont("Helvetica", 8)
    c.drawRightString(195 * mm, y, f"Page {page}")
    y -= 9 * mm
    c.setFont("Helvetica-Bold", 9)
    for x, label in ((15, "#"), (22, "Customer"), (62, "Address"), (122, "Mobile"), (152, "Bottles"), (190, "Qty")):
        c.drawString(x * mm, y, label)
    c.line(15 * mm, y - 2 * mm, 195 * mm, y - 2 * mm)
    return y - LINE_HEIGHT


def render_manifest_pdf(
    snapshot: Mapping[str, Any],
    out_path: Path,
    version: Optional[int] = None,
    policy: BottlePolicy = DEFAULT_POLICY,
) -> Path:
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    c = canvas.Canvas(str(out_path), pagesize=A4)
    _, height = A4
    y_start = height - 20 * mm

    stops: List[Dict[str, Any]] = list(snapshot.get("stops") or [])
    page = 1
    idx = 0
    while True:
        y = _header(c, snapshot, version, page, y_start)
        c.setFont("Helvetica", 9)
        for _ in range(ROWS_PER_PAGE):
            if idx >= len(stops):
                break
            stop = stops[idx]
            c.drawString(15 * mm, y, str(stop.get("stopNumber", idx + 1)))
            c.drawString(22 * mm, y, _clip(stop.get("customerName"), 24))
            c.drawString(62 * mm, y, _clip(stop.get("address"), 36))
            c.drawString(122 * mm, y, _clip(stop.get("mobile"), 16))
            c.drawString(152 * mm, y, _clip(stop.get("bottleBreakdown"), 24))
            c.drawRightString(195 * mm, y, str(stop.get("quantity", 0)))
            extra = " / ".join(
                part
                for part in (
                    f"Inv {stop['invoiceNumber']}" if stop.get("invoiceNumber") else "",
                    _clip(stop.get("notes"), 90),
                )
                if part
            )
            if extra:
                c.setFont("Helvetica-Oblique", 8)
                c.drawString(22 * mm, y - 4 * mm, extra)
                c.setFont("Helvetica", 9)
            y -= LINE_HEIGHT + (4 * mm if extra else 0)
            idx += 1
        if idx >= len(stops):
            break
        c.showPage()
        page += 1

    y -= 4 * mm
    c.setFont("Helvetica-Bold", 10)
    c.drawString(15 * mm, y, f"Total stops: {snapshot.get('totalStops', len(stops))}")
    c.drawString(70 * mm, y, f"Total bottles: {snapshot.get('totalBottles', 0)}")
    c.setFont("Helvetica", 9)
    c.drawString(15 * mm, y - 6 * mm, f"Breakdown: {format_breakdown(snapshot.get('breakdown') or {}, policy)}")
    c.showPage()
    c.save()
    return out_path


__all__ = ["manifest_filename", "render_manifest_pdf"]
