"""
Generadores de documentos de envío (etiquetas, lista de empaque, factura
comercial). Son proyecciones puras: no modifican nada.
"""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP
from io import BytesIO
import re
from typing import Any

import pandas as pd

from .ledger import average_rate
from .packing import box_cbm, shipment_totals

TWO_PLACES = Decimal("0.01")
INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _party(entity) -> dict[str, Any] | None:
    if entity is None:
        return None
    return {
        "name": entity.name,
        "address": entity.address,
        "city": getattr(entity, "city", ""),
        "state": getattr(entity, "state", ""),
        "country": entity.country,
        "phone": entity.phone,
        "email": entity.email,
    }


def _contents(box) -> list[dict[str, Any]]:
    return [
        {
            "product_id": item.product_id,
            "name": item.product.name,
            "hs_code": item.product.hs_code,
            "quantity": item.quantity,
            "unit": item.product.unit,
        }
        for item in box.items.all()
    ]


def build_box_label(shipment, box, user_settings, customer=None) -> dict[str, Any]:
    boxes = list(shipment.boxes.all())
    return {
        "shipper": _party(user_settings),
        "consignee": _party(customer or shipment.customer),
        "shipment": shipment.name,
        "destination": shipment.destination,
        "lot_number": shipment.lot_number,
        "box_number": box.box_number,
        "box_count": len(boxes),
        "box_label": f"{box.box_number} of {len(boxes)}",
        "weight": box.weight,
        "dimensions": box.dimensions,
        "cbm": round(box_cbm(box), 4),
        "contents": _contents(box),
    }


def build_packing_list(shipment, user_settings, customer=None) -> dict[str, Any]:
    rows = []
    boxes = []
    for box in shipment.boxes.all():
        contents = _contents(box)
        boxes.append(
            {
                "box_number": box.box_number,
                "weight": box.weight,
                "dimensions": box.dimensions,
                "cbm": round(box_cbm(box), 4),
                "total_items": sum(item["quantity"] for item in contents),
            }
        )
        for item in contents:
            rows.append(
                {
                    "box_number": box.box_number,
                    "product": item["name"],
                    "hs_code": item["hs_code"],
                    "quantity": item["quantity"],
                    "unit": item["unit"],
                }
            )
    return {
        "shipper": _party(user_settings),
        "consignee": _party(customer or shipment.customer),
        "shipment": shipment.name,
        "destination": shipment.destination,
        "lot_number": shipment.lot_number,
        "boxes": boxes,
        "rows": rows,
        "totals": shipment_totals(shipment),
    }


def build_commercial_invoice(shipment, user_settings, customer=None) -> dict[str, Any]:
    """
    Agrupa los productos empacados por HS code.

    El valor de cada producto es cantidad empacada x tarifa promedio simple.
    El precio unitario de la línea es valor total / cantidad total.
    """
    packed: "OrderedDict[int, dict[str, Any]]" = OrderedDict()
    for box in shipment.boxes.all():
        for item in box.items.all():
            entry = packed.setdefault(item.product_id, {"product": item.product, "quantity": 0})
            entry["quantity"] += item.quantity

    lines: "OrderedDict[str, dict[str, Any]]" = OrderedDict()
    for entry in packed.values():
        product = entry["product"]
        value = entry["quantity"] * average_rate(product)
        line = lines.setdefault(
            product.hs_code,
            {"hs_code": product.hs_code, "descriptions": [], "unit": product.unit, "total_quantity": 0, "total_value": Decimal("0")},
        )
        line["descriptions"].append(product.name)
        line["total_quantity"] += entry["quantity"]
        line["total_value"] += value

    line_items = []
    for line in lines.values():
        unit_price = line["total_value"] / line["total_quantity"] if line["total_quantity"] else Decimal("0")
        line_items.append(
            {
                "hs_code": line["hs_code"],
                "description": ", ".join(line["descriptions"]),
                "unit": line["unit"],
                "total_quantity": line["total_quantity"],
                "unit_price": _money(unit_price),
                "total_value": _money(line["total_value"]),
            }
        )

    return {
        "shipper": _party(user_settings),
        "consignee": _party(customer or shipment.customer),
        "shipment": shipment.name,
        "destination": shipment.destination,
        "lot_number": shipment.lot_number,
        "currency": getattr(user_settings, "currency", "USD"),
        "line_items": line_items,
        "grand_total": _money(sum((item["total_value"] for item in line_items), Decimal("0"))),
        "totals": shipment_totals(shipment),
    }


def build_invoice_mapping(shipment) -> list[dict[str, Any]]:
    """Facturas de proveedor que aportaron productos empacados en el envío"""
    packed: dict[int, int] = {}
    products = {}
    for box in shipment.boxes.all():
        for item in box.items.all():
            packed[item.product_id] = packed.get(item.product_id, 0) + item.quantity
            products[item.product_id] = item.product

    mapping: "OrderedDict[int, dict[str, Any]]" = OrderedDict()
    for product_id, product in products.items():
        for link in product.invoice_links.select_related("invoice__supplier"):
            invoice = link.invoice
            entry = mapping.setdefault(
                invoice.id,
                {
                    "invoice_id": invoice.id,
                    "invoice_number": invoice.invoice_number,
                    "supplier": invoice.supplier.name,
                    "date": invoice.date,
                    "products": [],
                },
            )
            entry["products"].append(
                {
                    "name": product.name,
                    "hs_code": product.hs_code,
                    "invoice_quantity": link.quantity,
                    "rate": link.rate,
                    "packed_quantity": packed[product_id],
                }
            )
    return list(mapping.values())


def _frame(rows: list[dict[str, Any]]) -> pd.DataFrame:
    normalized = [
        {key: float(value) if isinstance(value, Decimal) else value for key, value in row.items()}
        for row in rows
    ]
    return pd.DataFrame(normalized)


def render_workbook(sheets: dict[str, list[dict[str, Any]]]) -> bytes:
    """Escribe cada hoja en un libro Excel (.xlsx) y devuelve los bytes"""
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            _frame(rows).to_excel(writer, sheet_name=INVALID_SHEET_CHARS.sub("-", sheet_name)[:31], index=False)
    return buffer.getvalue()


def packing_list_sheets(packing_list: dict[str, Any]) -> dict[str, list[dict[str, Any]]]:
    totals = packing_list["totals"]
    return {
        "Packing List": packing_list["rows"] or [{"box_number": None, "product": None, "quantity": 0}],
        "Boxes": packing_list["boxes"] or [{"box_number": None}],
        "Totals": [
            {
                "boxes": totals["box_count"],
                "total_items": totals["total_items"],
                "total_weight": totals["total_weight"],
                "total_cbm": totals["total_cbm"],
            }
        ],
    }


def commercial_invoice_sheets(invoice: dict[str, Any]) -> dict[str, list[dict[str, Any]]]:
    return {
        "Commercial Invoice": invoice["line_items"] or [{"hs_code": None, "total_quantity": 0}],
        "Summary": [
            {
                "shipment": invoice["shipment"],
                "destination": invoice["destination"],
                "currency": invoice["currency"],
                "grand_total": invoice["grand_total"],
            }
        ],
    }


def invoice_mapping_sheets(mapping: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    sheets = {
        "Summary": [
            {
                "invoice_number": entry["invoice_number"],
                "supplier": entry["supplier"],
                "date": entry["date"],
                "products": len(entry["products"]),
                "packed_quantity": sum(p["packed_quantity"] for p in entry["products"]),
            }
            for entry in mapping
        ] or [{"invoice_number": None}],
    }
    for entry in mapping:
        sheets[f"{entry['invoice_id']} {entry['invoice_number']}"] = entry["products"]
    return sheets
