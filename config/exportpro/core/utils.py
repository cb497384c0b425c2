"""
Utilidades reutilizables para las vistas
"""

from datetime import date, datetime


def parse_date_param(value: str | None) -> date | None:
    """Convierte 'YYYY-MM-DD' en fecha; None si viene vacío o mal formado"""
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        return None


def parse_bool_param(value: str | None) -> bool:
    return str(value or '').strip().lower() in {'1', 'true', 'yes', 'si'}


def attachment_filename(prefix: str, name: str, extension: str) -> str:
    safe = ''.join(ch if ch.isalnum() or ch in '-_' else '_' for ch in (name or '').strip())
    return f"{prefix}_{safe or 'export'}.{extension}"
