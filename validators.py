from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional

from errors import ValidationError


class TextValidator:
    """Presence checks and trimming for incoming text fields."""

    @staticmethod
    def is_blank(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, str):
            return not value.strip()
        return False

    @staticmethod
    def clean(value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @staticmethod
    def require(fields: Dict[str, Any], required: Iterable[str], message: str) -> Dict[str, Any]:
        """Return ``fields`` trimmed, or raise ValidationError if a required one is blank."""
        for name in required:
            if TextValidator.is_blank(fields.get(name)):
                raise ValidationError(message)
        return {name: TextValidator.clean(value) for name, value in fields.items()}


class DateValidator:
    """ISO date handling for loan dates."""

    @staticmethod
    def normalize(value: Any, field_name: str) -> Optional[str]:
        """Return ``YYYY-MM-DD`` for a date or ISO string; ``None`` for blank values.

        A trailing time part (``2024-03-01T00:00:00.000Z``) is dropped, so rows
        echoed back by the frontend are accepted.
        """
        if TextValidator.is_blank(value):
            return None
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        text = str(value).strip()
        if len(text) > 10 and text[10] in ("T", " "):
            text = text[:10]
        try:
            return date.fromisoformat(text).isoformat()
        except ValueError as exc:
            raise ValidationError(f"El campo {field_name} debe ser una fecha válida (AAAA-MM-DD)") from exc

    @staticmethod
    def check_return_after_loan(fecha_prestamo: str, fecha_devolucion: Optional[str]) -> None:
        if fecha_devolucion is not None and fecha_devolucion < fecha_prestamo:
            raise ValidationError("La fecha de devolución no puede ser anterior a la fecha de préstamo")
