"""
Manejador global de excepciones DRF con formato consistente.
"""

from __future__ import annotations

import logging

from django.core.exceptions import ObjectDoesNotExist, ValidationError as DjangoValidationError
from django.db.models import ProtectedError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import NotFound
from rest_framework.views import exception_handler

from exportpro.core.api_responses import business_error_response, error_response

logger = logging.getLogger(__name__)


def custom_exception_handler(exc, context):
    if isinstance(exc, (ObjectDoesNotExist, Http404)):
        exc = NotFound("Recurso no encontrado")
    elif isinstance(exc, ProtectedError):
        return error_response(
            detail="El registro está en uso y no se puede eliminar",
            code="PROTECTED_RESOURCE",
            http_status=status.HTTP_409_CONFLICT,
        )
    elif isinstance(exc, DjangoValidationError):
        return business_error_response(exc)

    response = exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("Error no controlado en %s", view.__class__.__name__ if view else "vista")
        return response

    data = response.data
    if isinstance(data, dict) and "detail" in data:
        errors = _flatten(data["detail"])
        code = str(getattr(exc, "default_code", "error")).upper()
    else:
        # Errores de serializer: {"campo": [...]} o listas anidadas
        errors = _flatten(data)
        code = "VALIDATION_ERROR"

    detail = errors[0] if errors else "Ha ocurrido un error."
    response.data = {"detail": detail, "code": code, "errors": errors or [detail]}
    return response


def _flatten(data, prefix: str = "") -> list[str]:
    """Convierte la estructura de errores de DRF en mensajes "campo: mensaje" """
    if isinstance(data, dict):
        errors = []
        for field, value in data.items():
            name = f"{prefix}.{field}" if prefix else str(field)
            errors.extend(_flatten(value, "" if field == "non_field_errors" else name))
        return errors
    if isinstance(data, (list, tuple)):
        errors = []
        for index, item in enumerate(data):
            nested = isinstance(item, (dict, list, tuple))
            errors.extend(_flatten(item, f"{prefix}[{index}]" if nested and prefix else prefix))
        return errors
    return [f"{prefix}: {data}" if prefix else str(data)]
