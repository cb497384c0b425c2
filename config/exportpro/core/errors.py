"""
Errores de negocio con código y estado HTTP asociados.

Todos heredan de ValidationError para que los servicios sigan el mismo
contrato que el resto de validaciones de Django.
"""

from __future__ import annotations

from typing import Any

from django.core.exceptions import ValidationError
from rest_framework import status


class BusinessError(ValidationError):
    code_name = "VALIDATION_ERROR"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, code_name: str | None = None, metadata: dict[str, Any] | None = None):
        super().__init__(message)
        if code_name:
            self.code_name = code_name
        self.metadata = metadata or {}


class PlanLimitExceeded(BusinessError):
    http_status = status.HTTP_403_FORBIDDEN

    @classmethod
    def from_result(cls, result) -> "PlanLimitExceeded":
        return cls(result.message, code_name=result.error_code, metadata=result.metadata)


class FeatureNotAvailable(BusinessError):
    code_name = "FEATURE_NOT_AVAILABLE"
    http_status = status.HTTP_403_FORBIDDEN


class InsufficientStock(BusinessError):
    code_name = "INSUFFICIENT_STOCK"
    http_status = status.HTTP_409_CONFLICT


class DuplicateInvoice(BusinessError):
    code_name = "DUPLICATE_INVOICE_NUMBER"
    http_status = status.HTTP_409_CONFLICT


class OCRExtractionError(BusinessError):
    code_name = "OCR_EXTRACTION_FAILED"
    http_status = status.HTTP_502_BAD_GATEWAY
