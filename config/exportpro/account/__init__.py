"""
Módulo de cuenta y plan
"""

from .serializers import UserSettingsSerializer
from .views import AccountViewSet

__all__ = [
    "UserSettingsSerializer",
    "AccountViewSet",
]
