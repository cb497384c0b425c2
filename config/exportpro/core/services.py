"""
Servicios de negocio para ExportPro
"""
from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Iterable

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum
from PIL import Image, UnidentifiedImageError

from ..models import (
    AuditLog,
    Customer,
    Invoice,
    Payment,
    Shipment,
    ShipmentDocument,
    Supplier,
    UserSettings,
)
from .errors import DuplicateInvoice
from .ledger import receive_product_line
from .plan_limits import ensure_within_limit

logger = logging.getLogger(__name__)


def _config(key: str, default):
    return getattr(settings, "EXPORTPRO", {}).get(key, default)


# ---------------------------------------------------------------------------
# Proveedores
# ---------------------------------------------------------------------------

def find_similar_supplier(suppliers: Iterable[Supplier], candidate_name: str) -> Supplier | None:
    """
    Busca un proveedor cuyo nombre sea igual, contenga o esté contenido en el
    nombre candidato (sin distinguir mayúsculas). Gana el primero de la lista.
    """
    candidate = (candidate_name or "").strip().lower()
    if not candidate:
        return None
    for supplier in suppliers:
        existing = supplier.name.strip().lower()
        if existing == candidate or candidate in existing or existing in candidate:
            return supplier
    return None


def create_supplier(user, **data) -> Supplier:
    with transaction.atomic():
        ensure_within_limit(user, "suppliers")
        supplier = Supplier.objects.create(owner=user, **data)
        AuditLog.objects.create(
            owner=user,
            action="create_supplier",
            entity="supplier",
            entity_id=supplier.id,
            performed_by=user.username,
            extra_data={"name": supplier.name},
        )
    return supplier


# ---------------------------------------------------------------------------
# Facturas y pagos
# ---------------------------------------------------------------------------

def find_duplicate_invoice(user, supplier: Supplier, invoice_number: str, exclude_id: int | None = None) -> Invoice | None:
    queryset = Invoice.objects.for_owner(user).filter(
        supplier=supplier, invoice_number__iexact=(invoice_number or "").strip()
    )
    if exclude_id:
        queryset = queryset.exclude(id=exclude_id)
    return queryset.first()


def create_invoice(
    user,
    supplier: Supplier,
    invoice_number: str,
    date,
    amount,
    customer: Customer | None = None,
    notes: str = "",
    scan=None,
    confirm_duplicate: bool = False,
) -> Invoice:
    """
    Crea una factura respetando el límite mensual del plan.

    Un número repetido para el mismo proveedor lanza DuplicateInvoice salvo
    que `confirm_duplicate` sea True.
    """
    invoice_number = (invoice_number or "").strip()
    if not invoice_number:
        raise ValidationError("El número de factura es requerido")
    if Decimal(str(amount)) < 0:
        raise ValidationError("El monto no puede ser negativo")

    with transaction.atomic():
        ensure_within_limit(user, "invoices")

        duplicate = find_duplicate_invoice(user, supplier, invoice_number)
        if duplicate is not None and not confirm_duplicate:
            raise DuplicateInvoice(
                f"Ya existe la factura {duplicate.invoice_number} para {supplier.name}. "
                "Confirma para registrarla de todas formas.",
                metadata={"existing_invoice_id": duplicate.id},
            )
        if duplicate is not None:
            logger.warning(
                "Factura duplicada confirmada por %s: %s (%s)",
                user.username,
                invoice_number,
                supplier.name,
            )

        if scan is not None:
            ScanService.validate_scan(scan)

        invoice = Invoice.objects.create(
            owner=user,
            supplier=supplier,
            customer=customer,
            invoice_number=invoice_number,
            date=date,
            amount=amount,
            notes=notes or "",
            scan=scan,
        )
        AuditLog.objects.create(
            owner=user,
            action="create_invoice",
            entity="invoice",
            entity_id=invoice.id,
            performed_by=user.username,
            extra_data={
                "invoice_number": invoice_number,
                "supplier_id": supplier.id,
                "amount": float(invoice.amount),
                "duplicate_confirmed": duplicate is not None,
            },
        )
    return invoice


def payment_status_for(amount, paid) -> str:
    amount = Decimal(str(amount or 0))
    paid = Decimal(str(paid or 0))
    if paid >= amount and paid > 0:
        return Invoice.PaymentStatus.PAID
    if paid > 0:
        return Invoice.PaymentStatus.PARTIAL
    return Invoice.PaymentStatus.UNPAID


def invoice_paid_amount(invoice: Invoice) -> Decimal:
    return Payment.objects.filter(invoice_id=invoice.id).aggregate(total=Sum("amount"))["total"] or Decimal("0")


def refresh_payment_status(user, invoice_id: int) -> str | None:
    """Recalcula y guarda el estado de pago; None si la factura no existe o no es del usuario"""
    invoices = Invoice.objects.for_owner(user).filter(id=invoice_id)
    invoice = invoices.first()
    if invoice is None:
        return None
    new_status = payment_status_for(invoice.amount, invoice_paid_amount(invoice))
    invoices.update(payment_status=new_status)
    return new_status


def record_payment(user, invoice_id: int, amount, payment_date, notes: str = "") -> tuple[Payment, bool]:
    """
    Registra un pago. Devuelve (pago, True si la factura quedó sobrepagada).

    El sobrepago se permite; solo se informa.
    """
    amount = Decimal(str(amount))
    if amount <= 0:
        raise ValidationError("El monto del pago debe ser mayor a cero")

    with transaction.atomic():
        invoice = Invoice.objects.for_owner(user).select_for_update().get(id=invoice_id)
        payment = Payment.objects.create(
            invoice=invoice, amount=amount, payment_date=payment_date, notes=notes or ""
        )
        paid = invoice_paid_amount(invoice)
        AuditLog.objects.create(
            owner=user,
            action="record_payment",
            entity="invoice",
            entity_id=invoice.id,
            performed_by=user.username,
            extra_data={"payment_id": payment.id, "amount": float(amount), "paid": float(paid)},
        )
    return payment, paid > invoice.amount


def delete_payment(user, payment_id: int) -> Invoice:
    with transaction.atomic():
        payment = Payment.objects.for_owner(user).select_related("invoice").get(id=payment_id)
        invoice = payment.invoice
        payment.delete()
        AuditLog.objects.create(
            owner=user,
            action="delete_payment",
            entity="invoice",
            entity_id=invoice.id,
            performed_by=user.username,
            extra_data={"payment_id": payment_id},
        )
    invoice.refresh_from_db()
    return invoice


def import_invoice(user, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Registra una factura revisada (por ejemplo desde OCR) con sus productos.

    El proveedor se toma de `supplier_id`, o se enlaza con uno parecido por
    nombre, o se crea. Cada producto pasa por `receive_product_line`. Todo en
    una transacción.
    """
    supplier_data = payload.get("supplier") or {}
    invoice_data = payload.get("invoice") or {}
    lines = payload.get("products") or []
    if not lines:
        raise ValidationError("La factura debe tener al menos un producto")

    with transaction.atomic():
        supplier_created = False
        if payload.get("supplier_id"):
            supplier = Supplier.objects.for_owner(user).get(id=payload["supplier_id"])
        else:
            name = (supplier_data.get("name") or "").strip()
            if not name:
                raise ValidationError("Se requiere el proveedor de la factura")
            supplier = find_similar_supplier(Supplier.objects.for_owner(user), name)
            if supplier is None:
                supplier = create_supplier(
                    user,
                    name=name,
                    contact_person=supplier_data.get("contact_person") or "",
                    email=supplier_data.get("email") or "",
                    phone=supplier_data.get("phone") or "",
                    address=supplier_data.get("address") or "",
                    country=supplier_data.get("country") or "",
                )
                supplier_created = True

        customer = None
        if payload.get("customer_id"):
            customer = Customer.objects.for_owner(user).get(id=payload["customer_id"])

        invoice = create_invoice(
            user,
            supplier=supplier,
            invoice_number=invoice_data.get("invoice_number"),
            date=invoice_data.get("date"),
            amount=invoice_data.get("total_amount") or 0,
            customer=customer,
            confirm_duplicate=bool(payload.get("confirm_duplicate")),
        )

        received = []
        for line in lines:
            product, linked = receive_product_line(
                user,
                invoice.id,
                name=line.get("name"),
                hs_code=line.get("hs_code") or "",
                quantity=line.get("quantity"),
                rate=line.get("rate") or 0,
                unit=line.get("unit") or "pcs",
                alternate_names=line.get("alternate_names") or [],
            )
            received.append((product, linked))

    logger.info(
        "Factura %s importada con %s líneas (proveedor nuevo: %s)",
        invoice.id,
        len(received),
        supplier_created,
    )
    return {
        "invoice": invoice,
        "supplier": supplier,
        "supplier_created": supplier_created,
        "products": received,
    }


# ---------------------------------------------------------------------------
# Envíos
# ---------------------------------------------------------------------------

def create_shipment(user, **data) -> Shipment:
    with transaction.atomic():
        ensure_within_limit(user, "shipments")
        shipment = Shipment.objects.create(owner=user, **data)
        AuditLog.objects.create(
            owner=user,
            action="create_shipment",
            entity="shipment",
            entity_id=shipment.id,
            performed_by=user.username,
            extra_data={"name": shipment.name, "destination": shipment.destination},
        )
    return shipment


# ---------------------------------------------------------------------------
# Suscripción
# ---------------------------------------------------------------------------

def set_subscription_status(target_user, subscription_status: str, performed_by: str = "system") -> bool:
    """
    Cambia el plan de un usuario. Devuelve False si ya tenía ese plan.
    """
    subscription_status = (subscription_status or "").strip().upper()
    if subscription_status not in UserSettings.SubscriptionStatus.values:
        raise ValidationError(
            f"Plan inválido: {subscription_status}. Opciones: {', '.join(UserSettings.SubscriptionStatus.values)}"
        )

    with transaction.atomic():
        user_settings = UserSettings.for_user(target_user)
        previous = user_settings.subscription_status
        if previous == subscription_status:
            return False
        user_settings.subscription_status = subscription_status
        user_settings.save(update_fields=["subscription_status", "updated_at"])
        AuditLog.objects.create(
            owner=target_user,
            action="update_subscription",
            entity="user_settings",
            entity_id=user_settings.id,
            performed_by=performed_by,
            extra_data={"from": previous, "to": subscription_status},
        )
    logger.info("Plan de %s cambiado de %s a %s", target_user.username, previous, subscription_status)
    return True


# ---------------------------------------------------------------------------
# Archivos
# ---------------------------------------------------------------------------

class ScanService:
    """Validación de escaneos de facturas (imagen o PDF)"""

    ALLOWED_IMAGE_FORMATS = ['JPEG', 'PNG', 'WEBP']

    @classmethod
    def max_size(cls) -> int:
        return int(_config("MAX_SCAN_SIZE", 10 * 1024 * 1024))

    @classmethod
    def is_pdf(cls, uploaded_file) -> bool:
        position = uploaded_file.tell() if hasattr(uploaded_file, "tell") else 0
        header = uploaded_file.read(5)
        uploaded_file.seek(position)
        return header == b"%PDF-"

    @classmethod
    def validate_scan(cls, uploaded_file):
        """
        Valida tamaño y formato del escaneo

        Raises:
            ValidationError: Si el archivo no es un PDF o una imagen válida
        """
        if uploaded_file.size > cls.max_size():
            raise ValidationError(
                f"El archivo es demasiado grande. "
                f"Máximo permitido: {cls.max_size() // (1024 * 1024)}MB"
            )
        if cls.is_pdf(uploaded_file):
            return "PDF"
        try:
            with Image.open(uploaded_file) as img:
                image_format = (img.format or "").upper()
        except UnidentifiedImageError as e:
            raise ValidationError(f"El archivo no es una imagen válida: {str(e)}")
        finally:
            uploaded_file.seek(0)
        if image_format not in cls.ALLOWED_IMAGE_FORMATS:
            raise ValidationError(
                f"Formato de imagen no permitido. Formatos válidos: {', '.join(cls.ALLOWED_IMAGE_FORMATS)}"
            )
        return image_format


ALLOWED_DOCUMENT_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def attach_shipment_document(user, shipment_id: int, uploaded_file, doc_type: str, custom_doc_type_label: str = "", notes: str = "") -> ShipmentDocument:
    """Adjunta un documento final a un envío validando tipo y tamaño"""
    if doc_type not in ShipmentDocument.DocType.values:
        raise ValidationError(f"Tipo de documento inválido: {doc_type}")
    if doc_type == ShipmentDocument.DocType.OTHER and not (custom_doc_type_label or "").strip():
        raise ValidationError("Indica el nombre del documento cuando el tipo es OTHER")
    if doc_type != ShipmentDocument.DocType.OTHER:
        custom_doc_type_label = ""

    mime_type = getattr(uploaded_file, "content_type", "") or ""
    if mime_type not in ALLOWED_DOCUMENT_MIME_TYPES:
        raise ValidationError(f"Tipo de archivo no permitido: {mime_type or 'desconocido'}")
    max_size = int(_config("MAX_DOCUMENT_SIZE", 25 * 1024 * 1024))
    if uploaded_file.size > max_size:
        raise ValidationError(f"El archivo supera el máximo de {max_size // (1024 * 1024)}MB")

    with transaction.atomic():
        shipment = Shipment.objects.for_owner(user).get(id=shipment_id)
        document = ShipmentDocument.objects.create(
            shipment=shipment,
            doc_type=doc_type,
            custom_doc_type_label=custom_doc_type_label.strip(),
            file=uploaded_file,
            file_name=getattr(uploaded_file, "name", "") or "document",
            mime_type=mime_type,
            file_size=uploaded_file.size,
            notes=notes or "",
        )
        AuditLog.objects.create(
            owner=user,
            action="attach_document",
            entity="shipment",
            entity_id=shipment.id,
            performed_by=user.username,
            extra_data={"document_id": document.id, "doc_type": doc_type},
        )
    return document
