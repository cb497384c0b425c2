from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
from ..models import Invoice, Payment
from .services import refresh_payment_status


def _refresh_for_invoice_owner(payment):
    """Recalcula con el dueño de la factura; nada si la factura ya se borró"""
    invoice = Invoice.objects.select_related("owner").filter(id=payment.invoice_id).first()
    if invoice is None:
        return
    refresh_payment_status(invoice.owner, invoice.id)

@receiver(post_save, sender=Payment)
def update_invoice_status_on_save(sender, instance, **kwargs):
    """Se ejecuta después de registrar o editar un pago"""
    _refresh_for_invoice_owner(instance)

@receiver(post_delete, sender=Payment)
def update_invoice_status_on_delete(sender, instance, **kwargs):
    """Se ejecuta después de eliminar un pago (la factura puede estar borrándose)"""
    _refresh_for_invoice_owner(instance)
