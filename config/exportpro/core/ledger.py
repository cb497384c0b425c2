"""
Libro de inventario de productos.

`receive_product_line` es la única vía de entrada de unidades y
`apply_availability_delta` la única que modifica `available_quantity`
después de la recepción.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Iterable

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import F

from ..models import AuditLog, Invoice, Product, ProductInvoiceLink
from .errors import InsufficientStock
from .plan_limits import ensure_within_limit

logger = logging.getLogger(__name__)


def _strict_availability() -> bool:
    return bool(getattr(settings, "EXPORTPRO", {}).get("STRICT_AVAILABILITY", False))


def merge_alternate_names(current: Iterable[str], incoming: Iterable[str] | None, canonical: str) -> list[str]:
    """Une nombres alternativos sin duplicados (sin distinguir mayúsculas)"""
    merged = list(current or [])
    seen = {name.lower() for name in merged}
    seen.add(canonical.strip().lower())
    for name in incoming or []:
        cleaned = str(name).strip()
        if cleaned and cleaned.lower() not in seen:
            merged.append(cleaned)
            seen.add(cleaned.lower())
    return merged


def receive_product_line(
    user,
    invoice_id: int,
    name: str,
    hs_code: str,
    quantity: int,
    rate,
    unit: str = "pcs",
    alternate_names: Iterable[str] | None = None,
) -> tuple[Product, bool]:
    """
    Registra una línea de factura en el inventario.

    Si no existe un producto con el mismo (nombre, hs_code) se crea con todo
    disponible. Si existe y aún no tiene vínculo con esta factura, se agrega
    el vínculo y se suman las unidades a `quantity` y `available_quantity`.
    Si el vínculo ya existe la llamada no hace nada.

    Returns:
        tuple: (producto, True si se registraron unidades nuevas)
    """
    name = (name or "").strip()
    hs_code = (hs_code or "").strip()
    if not name:
        raise ValidationError("El nombre del producto es requerido")
    if quantity is None or int(quantity) <= 0:
        raise ValidationError("La cantidad debe ser mayor a cero")
    quantity = int(quantity)
    rate = Decimal(str(rate or 0))
    if rate < 0:
        raise ValidationError("La tarifa no puede ser negativa")

    with transaction.atomic():
        invoice = Invoice.objects.for_owner(user).get(id=invoice_id)
        product = (
            Product.objects.for_owner(user)
            .select_for_update()
            .filter(name__iexact=name, hs_code=hs_code)
            .order_by("id")
            .first()
        )

        if product is None:
            ensure_within_limit(user, "products")
            product = Product.objects.create(
                owner=user,
                name=name,
                hs_code=hs_code,
                unit=unit or "pcs",
                quantity=quantity,
                available_quantity=quantity,
                alternate_names=merge_alternate_names([], alternate_names, name),
            )
            ProductInvoiceLink.objects.create(
                product=product, invoice=invoice, quantity=quantity, rate=rate
            )
            AuditLog.objects.create(
                owner=user,
                action="receive_product",
                entity="product",
                entity_id=product.id,
                performed_by=user.username,
                extra_data={"invoice_id": invoice.id, "quantity": quantity, "merged": False},
            )
            return product, True

        if ProductInvoiceLink.objects.filter(product=product, invoice=invoice).exists():
            logger.info(
                "Línea duplicada ignorada: producto %s ya vinculado a factura %s",
                product.id,
                invoice.id,
            )
            return product, False

        try:
            with transaction.atomic():
                ProductInvoiceLink.objects.create(
                    product=product, invoice=invoice, quantity=quantity, rate=rate
                )
        except IntegrityError:
            # Otro envío concurrente de la misma factura ganó la carrera
            product.refresh_from_db()
            return product, False

        Product.objects.filter(pk=product.pk).update(
            quantity=F("quantity") + quantity,
            available_quantity=F("available_quantity") + quantity,
            alternate_names=merge_alternate_names(product.alternate_names, alternate_names, product.name),
        )
        product.refresh_from_db()

        AuditLog.objects.create(
            owner=user,
            action="receive_product",
            entity="product",
            entity_id=product.id,
            performed_by=user.username,
            extra_data={"invoice_id": invoice.id, "quantity": quantity, "merged": True},
        )
        return product, True


def apply_availability_delta(product_id: int, delta: int, user) -> Product:
    """
    Suma `delta` a la disponibilidad del producto con piso en cero.

    Delta negativo = asignar a una caja; positivo = devolver de una caja.
    Con EXPORTPRO["STRICT_AVAILABILITY"] un delta que dejaría la
    disponibilidad en negativo se rechaza en lugar de recortarse. El producto
    se busca solo entre los del usuario.
    """
    with transaction.atomic():
        product = Product.objects.for_owner(user).select_for_update().get(id=product_id)
        target = product.available_quantity + int(delta)
        if target < 0:
            if _strict_availability():
                raise InsufficientStock(
                    f"Stock insuficiente para {product.name}. Disponible: {product.available_quantity}"
                )
            logger.warning(
                "Disponibilidad recortada a cero para producto %s (disponible=%s, delta=%s)",
                product.id,
                product.available_quantity,
                delta,
            )
            AuditLog.objects.create(
                owner=product.owner,
                action="availability_clamped",
                entity="product",
                entity_id=product.id,
                performed_by=user.username,
                extra_data={"available": product.available_quantity, "delta": int(delta)},
            )
            target = 0

        product.available_quantity = target
        product.save(update_fields=["available_quantity", "updated_at"])
        return product


def average_rate(product: Product) -> Decimal:
    """Promedio simple (no ponderado) de las tarifas de todos los vínculos"""
    rates = [link.rate for link in product.invoice_links.all()]
    if not rates:
        return Decimal("0")
    return sum(rates, Decimal("0")) / len(rates)


def inventory_value(products: Iterable[Product]) -> Decimal:
    return sum(
        (product.available_quantity * average_rate(product) for product in products),
        Decimal("0"),
    )


def packed_quantity(product: Product) -> int:
    return sum(item.quantity for item in product.box_assignments.all())


def conservation_drift(products: Iterable[Product]) -> list[dict]:
    """Productos donde disponible + empacado != total recibido"""
    drift = []
    for product in products:
        packed = packed_quantity(product)
        if product.available_quantity + packed != product.quantity:
            drift.append(
                {
                    "product_id": product.id,
                    "name": product.name,
                    "quantity": product.quantity,
                    "available_quantity": product.available_quantity,
                    "packed_quantity": packed,
                }
            )
    return drift
