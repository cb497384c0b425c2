"""
Respuestas API con el contrato {"detail", "code", "errors", ...extra}.

Los errores de negocio (ver core/errors.py) aportan además su estado HTTP y
un bloque `metadata` para que el cliente muestre límites o existencias.
"""

from __future__ import annotations

from typing import Any

from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import status
from rest_framework.response import Response


def _payload(detail: str, code: str, errors: list[str] | None = None, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"detail": detail, "code": code}
    if errors is not None:
        payload["errors"] = errors or [detail]
    payload.update(extra)
    return payload


def error_messages(exc: Exception) -> list[str]:
    """Aplana un ValidationError de Django ("campo: mensaje" cuando hay campos)"""
    if not isinstance(exc, DjangoValidationError):
        return [str(exc)]
    if hasattr(exc, "error_dict"):
        return [
            f"{field}: {message}"
            for field, messages in exc.message_dict.items()
            for message in messages
        ]
    return [str(message) for message in exc.messages if message]


def success_response(
    detail: str,
    code: str = "SUCCESS",
    http_status: int = status.HTTP_200_OK,
    **extra: Any,
) -> Response:
    return Response(_payload(detail, code, **extra), status=http_status)


def error_response(
    detail: str,
    code: str = "ERROR",
    http_status: int = status.HTTP_400_BAD_REQUEST,
    errors: list[str] | None = None,
    **extra: Any,
) -> Response:
    return Response(_payload(detail, code, errors or [], **extra), status=http_status)


def business_error_response(exc: Exception, default_code: str = "VALIDATION_ERROR") -> Response:
    """
    Convierte un error de servicio en respuesta estándar.

    Un ValidationError simple responde 400 con `default_code`; las subclases
    de BusinessError usan su propio código, estado y metadata.
    """
    errors = error_messages(exc) or ["Error de validacion"]
    extra: dict[str, Any] = {}
    metadata = getattr(exc, "metadata", None)
    if metadata:
        extra["metadata"] = metadata
    return error_response(
        detail=errors[0],
        code=getattr(exc, "code_name", None) or default_code,
        http_status=getattr(exc, "http_status", status.HTTP_400_BAD_REQUEST),
        errors=errors,
        **extra,
    )
