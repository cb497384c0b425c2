"""
Módulo de facturas de proveedor
"""

from .serializers import InvoiceSerializer, PaymentSerializer
from .views import InvoiceViewSet

__all__ = [
    "InvoiceSerializer",
    "PaymentSerializer",
    "InvoiceViewSet",
]
