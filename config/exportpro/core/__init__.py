"""
Módulo core - Reglas de negocio compartidas
"""

from .errors import (
    DuplicateInvoice,
    FeatureNotAvailable,
    InsufficientStock,
    OCRExtractionError,
    PlanLimitExceeded,
)
from .plan_limits import check_feature, check_limit, current_month_boundaries, get_plan_limits

__all__ = [
    # Errores de negocio
    'DuplicateInvoice',
    'FeatureNotAvailable',
    'InsufficientStock',
    'OCRExtractionError',
    'PlanLimitExceeded',

    # Límites por plan
    'check_feature',
    'check_limit',
    'current_month_boundaries',
    'get_plan_limits',
]
