"""
Motor de empaque de envíos y cajas.

Cada operación corre en una sola transacción con las filas de producto y
caja bloqueadas, de modo que disponible + empacado == recibido se cumple en
cada commit.
"""

from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Iterable

from django.core.exceptions import ValidationError
from django.db import transaction

from ..models import AuditLog, Box, BoxProduct, BoxType, Product, Shipment
from .errors import InsufficientStock
from .ledger import apply_availability_delta

logger = logging.getLogger(__name__)


def parse_dimensions(value: str | None) -> tuple[float, float, float] | None:
    """Convierte "60x45x40" en (60.0, 45.0, 40.0); None si no son tres números"""
    if not value:
        return None
    tokens = [token.strip() for token in str(value).lower().split("x")]
    if len(tokens) != 3:
        return None
    try:
        length, width, height = (float(token) for token in tokens)
    except ValueError:
        return None
    return length, width, height


def box_cbm(box: Box) -> float:
    """Volumen de la caja en m³; 0 si las dimensiones no se pueden leer"""
    parsed = parse_dimensions(box.dimensions)
    if parsed is None:
        return 0.0
    length, width, height = parsed
    return (length * width * height) / 1_000_000


def shipment_totals(shipment: Shipment) -> dict[str, Any]:
    boxes = list(shipment.boxes.all())
    return {
        "box_count": len(boxes),
        "total_weight": sum((box.weight or Decimal("0") for box in boxes), Decimal("0")),
        "total_cbm": round(sum(box_cbm(box) for box in boxes), 4),
        "total_items": sum(item.quantity for box in boxes for item in box.items.all()),
    }


def normalize_product_list(products: Iterable | None) -> dict[int, int]:
    """
    Normaliza [{"product_id": 1, "quantity": 5}, ...] a {1: 5}.

    Acepta también la clave "product". Rechaza cantidades no positivas y
    productos repetidos.
    """
    wanted: dict[int, int] = {}
    for entry in products or []:
        if isinstance(entry, dict):
            product_id = entry.get("product_id", entry.get("product"))
            quantity = entry.get("quantity")
        else:
            product_id, quantity = entry
        try:
            product_id = int(product_id)
            quantity = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError("Cada producto debe tener 'product_id' y 'quantity' numéricos")
        if quantity <= 0:
            raise ValidationError("La cantidad debe ser mayor a cero")
        if product_id in wanted:
            raise ValidationError(f"El producto {product_id} está repetido en la caja")
        wanted[product_id] = quantity
    return wanted


def validate_box_products(user, box: Box | None, wanted: dict[int, int]) -> dict[int, Product]:
    """
    Verifica que cada cantidad pedida quepa en disponible + lo que la caja ya tiene.

    No modifica nada. Lanza InsufficientStock con el primer producto que no alcanza.
    """
    products = {
        product.id: product
        for product in (
            Product.objects.for_owner(user).select_for_update().filter(id__in=list(wanted)).order_by("id")
        )
    }
    missing = [product_id for product_id in wanted if product_id not in products]
    if missing:
        raise ValidationError(f"Productos no encontrados: {', '.join(str(pid) for pid in missing)}")

    in_box = {}
    if box is not None:
        in_box = {item.product_id: item.quantity for item in box.items.all()}

    for product_id, quantity in wanted.items():
        product = products[product_id]
        ceiling = product.available_quantity + in_box.get(product_id, 0)
        if quantity > ceiling:
            raise InsufficientStock(
                f"Stock insuficiente para {product.name}. Solo hay {ceiling} disponibles.",
                metadata={"product_id": product_id, "requested": quantity, "available": ceiling},
            )
    return products


def _locked_box(user, shipment_id: int, box_id: int) -> Box:
    return (
        Box.objects.for_owner(user)
        .select_for_update()
        .get(id=box_id, shipment_id=shipment_id)
    )


def _audit(user, action: str, entity: str, entity_id: int, **extra_data) -> None:
    AuditLog.objects.create(
        owner=user,
        action=action,
        entity=entity,
        entity_id=entity_id,
        performed_by=user.username,
        extra_data=extra_data,
    )


def add_box_to_shipment(
    user,
    shipment_id: int,
    box_type_id: int | None = None,
    weight=None,
    dimensions: str | None = None,
    products: Iterable | None = None,
) -> Box:
    """
    Agrega una caja numerada al envío.

    El número es cantidad actual de cajas + 1. Si se indica un tipo de caja,
    sus dimensiones y peso vacío se copian en la caja cuando no se envían.
    """
    wanted = normalize_product_list(products)

    with transaction.atomic():
        shipment = Shipment.objects.for_owner(user).select_for_update().get(id=shipment_id)

        box_type = None
        if box_type_id is not None:
            box_type = BoxType.objects.for_owner(user).get(id=box_type_id)
            if not box_type.is_active:
                raise ValidationError("El tipo de caja está inactivo")
            if not dimensions:
                dimensions = box_type.dimensions
            if weight is None:
                weight = box_type.empty_weight

        validate_box_products(user, None, wanted)

        box = Box.objects.create(
            shipment=shipment,
            box_type=box_type,
            box_number=shipment.boxes.count() + 1,
            weight=weight,
            dimensions=dimensions or "",
        )
        for product_id, quantity in sorted(wanted.items()):
            apply_availability_delta(product_id, -quantity, user)
        BoxProduct.objects.bulk_create(
            [BoxProduct(box=box, product_id=pid, quantity=qty) for pid, qty in wanted.items()]
        )

        _audit(user, "add_box", "box", box.id, shipment_id=shipment.id, box_number=box.box_number, products=len(wanted))
        return box


def set_box_products(user, shipment_id: int, box_id: int, new_products) -> Box:
    """
    Reemplaza el contenido de la caja aplicando solo las diferencias.

    Para cada producto en la unión de ambas listas: si baja la cantidad se
    devuelve la diferencia al inventario, si sube se consume. No valida
    disponibilidad; ver `update_box_products`.
    """
    wanted = new_products if isinstance(new_products, dict) else normalize_product_list(new_products)

    with transaction.atomic():
        box = _locked_box(user, shipment_id, box_id)
        if Product.objects.for_owner(user).filter(id__in=list(wanted)).count() != len(wanted):
            raise ValidationError("Uno o más productos no existen")
        old = {item.product_id: item.quantity for item in box.items.all()}

        for product_id in sorted(set(old) | set(wanted)):
            difference = wanted.get(product_id, 0) - old.get(product_id, 0)
            if difference:
                apply_availability_delta(product_id, -difference, user)

        box.items.all().delete()
        BoxProduct.objects.bulk_create(
            [BoxProduct(box=box, product_id=pid, quantity=qty) for pid, qty in wanted.items()]
        )
        return box


def update_box_products(user, shipment_id: int, box_id: int, new_products) -> Box:
    """Valida el tope por producto y luego reconcilia el contenido de la caja"""
    wanted = normalize_product_list(new_products)

    with transaction.atomic():
        box = _locked_box(user, shipment_id, box_id)
        validate_box_products(user, box, wanted)
        box = set_box_products(user, shipment_id, box_id, wanted)
        _audit(user, "update_box_products", "box", box.id, shipment_id=shipment_id, products={str(k): v for k, v in wanted.items()})
        return box


def update_box(user, shipment_id: int, box_id: int, **changes) -> Box:
    """
    Edita solo el peso y las dimensiones guardadas en la caja.

    Dimensiones vacías en una caja con tipo vuelven a copiar las del tipo en
    ese momento; la caja nunca queda leyendo el tipo después.
    """
    allowed = {"weight", "dimensions"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Campos no editables: {', '.join(sorted(unknown))}")

    with transaction.atomic():
        box = _locked_box(user, shipment_id, box_id)
        for field_name, value in changes.items():
            if field_name == "dimensions":
                value = (value or "").strip()
                if not value and box.box_type_id:
                    value = box.box_type.dimensions
            setattr(box, field_name, value)
        if changes:
            box.save(update_fields=list(changes))
        return box


def remove_box_from_shipment(user, shipment_id: int, box_id: int) -> dict[int, int]:
    """Devuelve todo el contenido al inventario y elimina la caja"""
    with transaction.atomic():
        box = _locked_box(user, shipment_id, box_id)
        returned = {item.product_id: item.quantity for item in box.items.all()}
        for product_id, quantity in sorted(returned.items()):
            apply_availability_delta(product_id, quantity, user)
        box_number = box.box_number
        box.delete()
        _audit(user, "remove_box", "box", box_id, shipment_id=shipment_id, box_number=box_number)

    logger.info("Caja %s eliminada del envío %s; %s productos devueltos", box_id, shipment_id, len(returned))
    return returned


def delete_shipment(user, shipment_id: int) -> dict[int, int]:
    """Devuelve el contenido de todas las cajas y elimina el envío"""
    with transaction.atomic():
        shipment = Shipment.objects.for_owner(user).select_for_update().get(id=shipment_id)
        returned: dict[int, int] = {}
        for box in shipment.boxes.prefetch_related("items"):
            for item in box.items.all():
                returned[item.product_id] = returned.get(item.product_id, 0) + item.quantity
        for product_id, quantity in sorted(returned.items()):
            apply_availability_delta(product_id, quantity, user)

        name = shipment.name
        shipment.delete()
        _audit(user, "delete_shipment", "shipment", shipment_id, name=name, restored={str(k): v for k, v in returned.items()})

    logger.info("Envío %s eliminado; %s productos devueltos", shipment_id, len(returned))
    return returned
