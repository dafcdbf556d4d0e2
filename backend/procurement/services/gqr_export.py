"""Excel workbook of closed GQRs for the accounts team."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from io import BytesIO
from typing import Any, Iterable, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from procurement.models import GQREntry
from procurement.services.gqr import KGS_PER_MT, ZERO, closed_gqr_queryset, effective_terms

SHEET_TITLE = "GQR Export"
CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADERS = [
    "GQR_ID",
    "GQR_Date",
    "GQR_Status",
    "Is_Tally_Posted",
    "PO_Number",
    "PO_Date",
    "PO_Item",
    "PO_Rate",
    "PO_Quantity",
    "PO_Damage_Allowed",
    "PO_Cargo",
    "Supplier_Name",
    "Supplier_ID",
    "GR_Number",
    "GR_Date",
    "GR_Voucher_Number",
    "Export_Item_Name",
    "Export_Item_Qty_MT",
    "Export_Item_Rate",
    "Export_Item_HSN",
    "Export_Item_Unit",
    "Podi_Qty_MT",
    "Podi_Rate",
    "Podi_Bags",
    "Gap_Item1_Qty_MT",
    "Gap_Item1_Bags",
    "Gap_Item_Rate",
    "Wastage_Qty_MT",
    "Rot_Weight_Kg",
    "Doubles_Weight_Kg",
    "Sand_Weight_Kg",
    "Net_Weight_Kg",
    "Export_Quality_Weight_Kg",
    "Podi_Weight_Kg",
    "Gap_Items_Weight_Kg",
    "Cargo_Value",
    "Podi_Value",
    "Gap_Value",
    "Wastage_Value",
    "Total_Value",
]


def _q(value: Decimal, places: int) -> Decimal:
    return Decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def _mt(kgs: Decimal) -> Decimal:
    return _q(kgs / KGS_PER_MT, 3)


def export_row(gqr: GQREntry) -> List[Any]:
    """One flat worksheet row; missing links export as blanks and zeros."""
    pre_gr = gqr.pre_gr
    po = pre_gr.po if pre_gr else None
    supplier = po.supplier if po else None
    item = po.item if po else None
    terms = effective_terms(gqr, po)

    return [
        gqr.id,
        gqr.date,
        gqr.gqr_status,
        bool(gqr.is_tally_posted),
        po.vouchernumber if po else "",
        po.date if po else "",
        item.item_name if item else "",
        (po.rate if po else None) or ZERO,
        (po.quantity if po else None) or ZERO,
        (po.damage_allowed_kgs_ton if po else None) or ZERO,
        (po.cargo if po else None) or ZERO,
        supplier.name if supplier else "",
        supplier.id if supplier else 0,
        (pre_gr.gr_no if pre_gr else None) or "",
        (pre_gr.gr_dt if pre_gr else None) or "",
        (pre_gr.vouchernumber if pre_gr else None) or "",
        item.item_name if item else "",
        _mt(terms.cargo_weight),
        terms.rate,
        (item.hsn_code if item else None) or "",
        (item.item_unit if item else None) or "",
        _mt(terms.podi_weight),
        terms.podi_rate,
        (pre_gr.podi_bags if pre_gr else None) or 0,
        _mt(terms.gap_weight),
        (pre_gr.gap_item1_bags if pre_gr else None) or 0,
        terms.gap_rate,
        _mt(terms.wastage_weight),
        gqr.rot_weight or ZERO,
        gqr.doubles_weight or ZERO,
        gqr.sand_weight or ZERO,
        gqr.net_wt or ZERO,
        gqr.export_quality_weight or ZERO,
        gqr.podi_weight or ZERO,
        gqr.gap_items_weight or ZERO,
        _q(terms.cargo_weight * terms.rate, 2),
        _q(terms.podi_weight * terms.podi_rate, 2),
        _q(terms.gap_weight * terms.gap_rate, 2),
        _q(terms.wastage_weight * terms.rate, 2),
        gqr.total_value_received or ZERO,
    ]


def build_workbook(rows: Iterable[List[Any]]) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    ws.append(HEADERS)

    header_font = Font(bold=True)
    header_fill = PatternFill("solid", fgColor="F8FAFC")
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(vertical="center")

    for row in rows:
        ws.append(row)

    for idx, header in enumerate(HEADERS, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = max(12, len(header) + 2)
    ws.freeze_panes = "A2"
    return wb


def export_closed_gqrs(posted: Optional[bool] = None) -> Optional[bytes]:
    """Workbook bytes for the closed GQR set, or None when there is nothing to export."""
    rows = [export_row(gqr) for gqr in closed_gqr_queryset(posted=posted)]
    if not rows:
        return None
    bio = BytesIO()
    build_workbook(rows).save(bio)
    return bio.getvalue()
