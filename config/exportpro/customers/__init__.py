"""
Módulo de clientes
"""

from .serializers import CustomerSerializer
from .views import CustomerViewSet

__all__ = [
    "CustomerSerializer",
    "CustomerViewSet",
]
