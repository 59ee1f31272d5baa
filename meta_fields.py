"""
Review metadata fields.

Every write of `product_id`, `rating` or `reviewer_name` goes through the
REVIEW_META table: the caller must hold the field's capability, the value must
have the declared type, and the stored value is the sanitized one.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from auth import user_can
from sanitize import absint, sanitize_text

_NUMERIC_TYPES = (int, float)


class MetaError(Exception):
    status_code = 400
    code = "rest_invalid_param"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class UnknownMetaField(MetaError):
    def __init__(self, field: str):
        super().__init__(field, f"Unknown meta field: {field}")


class InvalidMetaValue(MetaError):
    pass


class MetaPermissionDenied(MetaError):
    status_code = 403
    code = "rest_cannot_update"


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, str) and value.strip().isdigit()


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, _NUMERIC_TYPES):
        return True
    if isinstance(value, str):
        try:
            float(value)
        except ValueError:
            return False
        return True
    return False


TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "integer": _is_integer,
    "number": _is_number,
    "string": lambda value: isinstance(value, str),
}


def sanitize_product_id(value: Any) -> Optional[int]:
    return absint(value) or None


def sanitize_rating(value: Any) -> Optional[int]:
    rating = absint(value)
    return rating if 1 <= rating <= 5 else None


def sanitize_reviewer_name(value: Any) -> Optional[str]:
    return sanitize_text(value) or None


@dataclass(frozen=True)
class MetaField:
    type: str
    description: str
    sanitize: Callable[[Any], Any]
    capability: str = "edit_posts"

    def validate(self, value: Any) -> bool:
        return value is None or TYPE_CHECKS[self.type](value)

    def authorize(self, user: Optional[dict]) -> bool:
        return user_can(user, self.capability)


REVIEW_META: Dict[str, MetaField] = {
    "product_id": MetaField("integer", "The ID of the product being reviewed", sanitize_product_id),
    "rating": MetaField("number", "The rating given in the review (1-5)", sanitize_rating),
    "reviewer_name": MetaField("string", "The name of the reviewer", sanitize_reviewer_name),
}


def apply_meta(user: Optional[dict], current: Optional[Dict[str, Any]], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Return `current` with `updates` validated, sanitized and merged in.

    Nothing is merged unless every update passes; None clears a field.
    """
    sanitized = {}
    for name, value in updates.items():
        meta_field = REVIEW_META.get(name)
        if meta_field is None:
            raise UnknownMetaField(name)
        if not meta_field.authorize(user):
            raise MetaPermissionDenied(name, f"Sorry, you are not allowed to edit the {name} custom field.")
        if not meta_field.validate(value):
            raise InvalidMetaValue(name, f"{name} is not of type {meta_field.type}.")
        sanitized[name] = meta_field.sanitize(value) if value is not None else None

    merged = {name: None for name in REVIEW_META}
    merged.update(current or {})
    merged.update(sanitized)
    return merged
