"""
Límites por plan (FREE / PAID) y chequeo de admisión.

`check_limit` y `check_feature` son puras: no escriben nada y nunca lanzan
excepciones, solo devuelven `allowed=False`. Los servicios usan
`ensure_within_limit` y `ensure_feature`, que sí lanzan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone as dt_timezone
import math
from typing import Any, Iterable

from django.db.models import QuerySet
from django.utils import timezone


UNLIMITED = math.inf


@dataclass(frozen=True)
class PlanLimits:
    max_suppliers: float
    max_products: float
    max_shipments_per_month: float
    max_invoices_per_month: float
    allow_ocr: bool
    allow_qr_labels: bool
    allow_data_export: bool


FREE_PLAN = PlanLimits(
    max_suppliers=3,
    max_products=50,
    max_shipments_per_month=3,
    max_invoices_per_month=10,
    allow_ocr=False,
    allow_qr_labels=False,
    allow_data_export=False,
)

PAID_PLAN = PlanLimits(
    max_suppliers=UNLIMITED,
    max_products=UNLIMITED,
    max_shipments_per_month=UNLIMITED,
    max_invoices_per_month=UNLIMITED,
    allow_ocr=True,
    allow_qr_labels=True,
    allow_data_export=True,
)


@dataclass(frozen=True)
class ResourceRule:
    limit_attr: str
    error_code: str
    label: str
    monthly: bool


RESOURCE_RULES = {
    "suppliers": ResourceRule("max_suppliers", "SUPPLIER_LIMIT_REACHED", "suppliers", False),
    "products": ResourceRule("max_products", "PRODUCT_LIMIT_REACHED", "products", False),
    "shipments": ResourceRule("max_shipments_per_month", "SHIPMENT_LIMIT_REACHED", "shipments", True),
    "invoices": ResourceRule("max_invoices_per_month", "INVOICE_LIMIT_REACHED", "invoices", True),
}

FEATURES = {
    "ocr": ("allow_ocr", "Escaneo OCR de facturas"),
    "qr_labels": ("allow_qr_labels", "Etiquetas con código QR"),
    "data_export": ("allow_data_export", "Exportación de datos"),
}


@dataclass(frozen=True)
class LimitCheckResult:
    allowed: bool
    error_code: str | None = None
    message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def get_plan_limits(subscription_status: str | None) -> PlanLimits:
    return PAID_PLAN if subscription_status == "PAID" else FREE_PLAN


def current_month_boundaries(now: datetime | None = None) -> tuple[datetime, datetime]:
    """
    Devuelve (inicio, fin) del mes calendario UTC que contiene `now`.

    Ambos extremos son inclusivos: el fin es el último microsegundo del mes.
    """
    now = (now or timezone.now()).astimezone(dt_timezone.utc)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        next_month = start.replace(year=start.year + 1, month=1)
    else:
        next_month = start.replace(month=start.month + 1)
    return start, next_month - timedelta(microseconds=1)


def _count_in_month(collection, start: datetime, end: datetime) -> int:
    if isinstance(collection, QuerySet):
        return collection.filter(created_at__gte=start, created_at__lte=end).count()
    return sum(1 for item in collection if start <= item.created_at <= end)


def _count(collection: Iterable) -> int:
    if isinstance(collection, QuerySet):
        return collection.count()
    return len(list(collection))


def check_limit(resource_type: str, collection, subscription_status: str | None, now: datetime | None = None) -> LimitCheckResult:
    """
    Verifica si se puede crear un recurso más del tipo indicado.

    Para proveedores y productos se cuenta la colección completa; para envíos
    y facturas solo los registros creados en el mes UTC actual. El plan PAID
    no cuenta nada.
    """
    if subscription_status == "PAID":
        return LimitCheckResult(allowed=True)

    rule = RESOURCE_RULES.get(resource_type)
    if rule is None:
        return LimitCheckResult(allowed=True)

    limit = getattr(get_plan_limits(subscription_status), rule.limit_attr)
    if rule.monthly:
        start, end = current_month_boundaries(now)
        current = _count_in_month(collection, start, end)
    else:
        current = _count(collection)

    if current < limit:
        return LimitCheckResult(allowed=True)

    resource_label = f"{rule.label} this month" if rule.monthly else rule.label
    if rule.monthly:
        message = f"Free plan allows up to {int(limit)} {rule.label} per month. Upgrade for unlimited."
    else:
        message = f"Free plan allows up to {int(limit)} {rule.label}. Upgrade to add more."
    return LimitCheckResult(
        allowed=False,
        error_code=rule.error_code,
        message=message,
        metadata={"limit": int(limit), "current": current, "resource_type": resource_label},
    )


def check_feature(feature: str, subscription_status: str | None) -> LimitCheckResult:
    attr, label = FEATURES[feature]
    if getattr(get_plan_limits(subscription_status), attr):
        return LimitCheckResult(allowed=True)
    return LimitCheckResult(
        allowed=False,
        error_code="FEATURE_NOT_AVAILABLE",
        message=f"{label} no está disponible en el plan gratuito. Actualiza tu plan para usarla.",
        metadata={"feature": feature},
    )


COLLECTIONS = {
    "suppliers": "Supplier",
    "products": "Product",
    "shipments": "Shipment",
    "invoices": "Invoice",
}


def ensure_within_limit(user, resource_type: str, now: datetime | None = None) -> None:
    """Lanza PlanLimitExceeded si el plan del usuario no admite otro recurso"""
    from .. import models
    from .errors import PlanLimitExceeded

    user_settings = models.UserSettings.for_user(user)
    collection = getattr(models, COLLECTIONS[resource_type]).objects.for_owner(user)
    result = check_limit(resource_type, collection, user_settings.subscription_status, now=now)
    if not result.allowed:
        raise PlanLimitExceeded.from_result(result)


def ensure_feature(user, feature: str) -> None:
    from ..models import UserSettings
    from .errors import FeatureNotAvailable

    result = check_feature(feature, UserSettings.for_user(user).subscription_status)
    if not result.allowed:
        raise FeatureNotAvailable(result.message, metadata=result.metadata)


def usage_summary(user, now: datetime | None = None) -> dict[str, Any]:
    """Uso actual contra los límites del plan; None significa ilimitado"""
    from .. import models

    subscription_status = models.UserSettings.for_user(user).subscription_status
    limits = get_plan_limits(subscription_status)
    start, end = current_month_boundaries(now)
    usage = {}
    for resource_type, rule in RESOURCE_RULES.items():
        collection = getattr(models, COLLECTIONS[resource_type]).objects.for_owner(user)
        current = _count_in_month(collection, start, end) if rule.monthly else _count(collection)
        limit = getattr(limits, rule.limit_attr)
        usage[resource_type] = {
            "current": current,
            "limit": None if limit == UNLIMITED else int(limit),
            "monthly": rule.monthly,
        }
    return {
        "subscription_status": subscription_status,
        "period": {"start": start, "end": end},
        "usage": usage,
        "features": {feature: getattr(limits, attr) for feature, (attr, _label) in FEATURES.items()},
    }
