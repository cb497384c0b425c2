"""
Módulo de tipos de caja
"""

from .serializers import BoxTypeSerializer
from .views import BoxTypeViewSet

__all__ = [
    "BoxTypeSerializer",
    "BoxTypeViewSet",
]
