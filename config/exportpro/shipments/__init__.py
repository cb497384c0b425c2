"""
Módulo de envíos y cajas
"""

from .serializers import BoxSerializer, ShipmentDocumentSerializer, ShipmentSerializer
from .views import ShipmentViewSet

__all__ = [
    "BoxSerializer",
    "ShipmentDocumentSerializer",
    "ShipmentSerializer",
    "ShipmentViewSet",
]
