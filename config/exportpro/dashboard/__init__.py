"""
Módulo de dashboard
"""

from .views import DashboardViewSet

__all__ = ["DashboardViewSet"]
