"""
Input Validation Utilities

Validation shared by the delivery services and the API schemas:
- Required free-text fields (addresses, names)
- Coordinates
- Text sanitization before storage
"""
import re

from delivery_market.core.exceptions import ValidationError

_MULTISPACE = re.compile(r" +")


class TextSanitizer:
    """Text sanitization for storage"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 1000) -> str:
        """
        Sanitize text input for safe storage.

        Trims whitespace, enforces max length, removes null bytes and
        collapses runs of spaces. No HTML escaping; that belongs to display.
        """
        if not text:
            return ""
        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        return _MULTISPACE.sub(" ", sanitized)


def require_text(value: str | None, field: str, max_length: int = 500) -> str:
    """Return the sanitized value, or raise ValidationError if it is missing or blank."""
    cleaned = TextSanitizer.sanitize(value, max_length=max_length)
    if not cleaned:
        raise ValidationError(f"{field} is required", field=field)
    return cleaned


def optional_text(value: str | None, max_length: int = 500) -> str | None:
    cleaned = TextSanitizer.sanitize(value, max_length=max_length)
    return cleaned or None


class CoordinateValidator:
    """Latitude/longitude range checks"""

    @staticmethod
    def validate(lat: float, lng: float) -> tuple[bool, str]:
        if not -90.0 <= lat <= 90.0:
            return False, f"latitude out of range: {lat}"
        if not -180.0 <= lng <= 180.0:
            return False, f"longitude out of range: {lng}"
        return True, ""

    @classmethod
    def require(cls, lat: float, lng: float, field: str = "location") -> None:
        is_valid, error = cls.validate(lat, lng)
        if not is_valid:
            raise ValidationError(error, field=field)
