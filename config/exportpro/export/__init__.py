"""
Módulo de exportación
"""

from .views import ExportViewSet

__all__ = ["ExportViewSet"]
