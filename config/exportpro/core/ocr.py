"""
Cliente de la función de extracción OCR de facturas.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
import json
import logging
from typing import Any
from urllib import error, request

from django.conf import settings
from PIL import Image, UnidentifiedImageError

from .errors import OCRExtractionError

logger = logging.getLogger(__name__)

UNITS = ("pcs", "kg", "m", "box", "set", "carton", "roll")


@dataclass(frozen=True)
class OCRSettings:
    endpoint: str
    api_key: str
    timeout_seconds: int


def _ocr_settings() -> OCRSettings:
    config = getattr(settings, "EXPORTPRO", {})
    return OCRSettings(
        endpoint=str(config.get("OCR_ENDPOINT") or "").strip(),
        api_key=str(config.get("OCR_API_KEY") or "").strip(),
        timeout_seconds=int(config.get("OCR_TIMEOUT_SECONDS", 60)),
    )


def _http_json(url: str, *, method: str = "POST", payload: dict[str, Any] | None = None, headers: dict[str, str] | None = None, timeout: int = 60) -> dict[str, Any]:
    data = None
    final_headers = {"Content-Type": "application/json"}
    final_headers.update(headers or {})
    if payload is not None:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    req = request.Request(url=url, data=data, headers=final_headers, method=method.upper())
    try:
        with request.urlopen(req, timeout=timeout) as response:
            body = response.read().decode("utf-8") or "{}"
            return json.loads(body)
    except error.HTTPError as exc:
        detail = exc.read().decode("utf-8") if exc.fp else str(exc)
        raise OCRExtractionError(f"HTTP {exc.code}: {detail}")
    except Exception as exc:
        raise OCRExtractionError(str(exc))


def _decode_payload(data: str) -> bytes:
    if "," in data and data.lstrip().startswith("data:"):
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise OCRExtractionError("El contenido no es base64 válido", code_name="INVALID_OCR_PAYLOAD")


def validate_scan_payload(image_base64: str | None = None, pdf_base64: str | None = None) -> str:
    """Verifica que el contenido sea una imagen legible o un PDF; devuelve el tipo"""
    if pdf_base64:
        raw = _decode_payload(pdf_base64)
        if not raw.startswith(b"%PDF-"):
            raise OCRExtractionError("El archivo no es un PDF válido", code_name="INVALID_OCR_PAYLOAD")
        return "pdf"
    if not image_base64:
        raise OCRExtractionError("Se requiere una imagen o un PDF", code_name="INVALID_OCR_PAYLOAD")
    raw = _decode_payload(image_base64)
    try:
        with Image.open(BytesIO(raw)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as exc:
        raise OCRExtractionError(f"La imagen no es válida: {exc}", code_name="INVALID_OCR_PAYLOAD")
    return "image"


def _as_number(value, default=0):
    if value in (None, ""):
        return default
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        return default


def normalize_extraction(result: dict[str, Any]) -> dict[str, Any]:
    """
    Convierte la respuesta de la función OCR en el payload de importación.

    Las claves camelCase de la función pasan a snake_case; las unidades
    desconocidas quedan como "pcs".
    """
    supplier = result.get("supplier") or {}
    invoice = result.get("invoice") or {}
    products = []
    for line in result.get("products") or []:
        name = str(line.get("name") or "").strip()
        if not name:
            continue
        unit = str(line.get("unit") or "pcs").strip().lower()
        products.append(
            {
                "name": name,
                "quantity": int(_as_number(line.get("quantity"), 0)),
                "unit": unit if unit in UNITS else "pcs",
                "rate": _as_number(line.get("rate"), 0),
                "hs_code": str(line.get("hsCode") or line.get("hs_code") or "").strip(),
            }
        )
    return {
        "supplier": {
            "name": str(supplier.get("name") or "").strip(),
            "contact_person": supplier.get("contactPerson") or "",
            "email": supplier.get("email") or "",
            "phone": supplier.get("phone") or "",
            "address": supplier.get("address") or "",
            "country": supplier.get("country") or "",
        },
        "invoice": {
            "invoice_number": str(invoice.get("invoiceNumber") or "").strip(),
            "date": invoice.get("date") or None,
            "total_amount": _as_number(invoice.get("totalAmount"), 0),
        },
        "products": products,
    }


def extract_invoice(image_base64: str | None = None, pdf_base64: str | None = None) -> dict[str, Any]:
    """
    Envía el escaneo a la función OCR y devuelve los datos normalizados.

    Raises:
        OCRExtractionError: Si falta configuración, el archivo es inválido o
            la función responde con error.
    """
    kind = validate_scan_payload(image_base64=image_base64, pdf_base64=pdf_base64)
    config = _ocr_settings()
    if not config.endpoint:
        raise OCRExtractionError("El servicio OCR no está configurado", code_name="OCR_NOT_CONFIGURED")

    headers = {}
    if config.api_key:
        headers["Authorization"] = f"Bearer {config.api_key}"
    payload = {"imageBase64": image_base64} if kind == "image" else {"pdfBase64": pdf_base64}

    response = _http_json(config.endpoint, payload=payload, headers=headers, timeout=config.timeout_seconds)
    if response.get("error"):
        logger.warning("Error de la función OCR: %s", response.get("error"))
        raise OCRExtractionError(str(response["error"]))
    data = response.get("data", response)
    return normalize_extraction(data)
