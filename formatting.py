"""Spanish (es-ES) rendering of dates and time ranges for notification text."""

from datetime import date

from errors import ValidationError

MONTH_NAMES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD") from None


def validate_date(value: str) -> str:
    if parse_date(value).isoformat() != value:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")
    return value


def format_day_month(value: str) -> str:
    """'2024-06-01' -> '1 de junio'"""
    d = parse_date(value)
    return f"{d.day} de {MONTH_NAMES[d.month - 1]}"


def format_long_date(value: str) -> str:
    """'2024-06-01' -> '1 de junio de 2024'"""
    d = parse_date(value)
    return f"{format_day_month(value)} de {d.year}"


def format_date_range(start: str, end: str) -> str:
    return f"del {format_long_date(start)} al {format_long_date(end)}"


def format_time_range(start_time: str, end_time: str) -> str:
    return f"de {start_time} a {end_time}"
