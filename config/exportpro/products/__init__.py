"""
Módulo de productos
"""

from .serializers import ProductSerializer, ProductStockSerializer
from .views import ProductViewSet

__all__ = [
    "ProductSerializer",
    "ProductStockSerializer",
    "ProductViewSet",
]
