"""
Módulo de gestión de proveedores para ExportPro
"""

from .serializers import SupplierSerializer, SupplierSimpleSerializer
from .views import SupplierViewSet

__all__ = [
    "SupplierSerializer",
    "SupplierSimpleSerializer",
    "SupplierViewSet",
]
