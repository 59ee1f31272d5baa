"""
The settings record.

Stored as a single option. Reads fill in defaults (and persist them on the
first read); updates are validated against SettingsRecord and merged over the
current values, so fields left out of an update keep what was stored.
"""
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError

from database import Store
from schemas import SettingsRecord

OPTION_NAME = "product_review_manager"

logger = structlog.get_logger(__name__)


class SettingsError(Exception):
    status_code = 400

    def __init__(self, code: str, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.errors = errors or []

    def detail(self) -> Dict[str, Any]:
        detail = {"code": self.code, "message": self.message}
        if self.errors:
            detail["errors"] = self.errors
        return detail


def default_settings() -> Dict[str, Any]:
    return SettingsRecord().model_dump()


def settings_schema() -> Dict[str, Any]:
    schema = SettingsRecord.model_json_schema()
    schema["$schema"] = "http://json-schema.org/draft-04/schema#"
    schema["title"] = OPTION_NAME
    return schema


def _messages(error: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc']) or 'settings'}: {e['msg']}" for e in error.errors()]


def get_settings(store: Store) -> Dict[str, Any]:
    stored = store.get_option(OPTION_NAME)
    if stored is None:
        settings = default_settings()
        store.set_option(OPTION_NAME, settings)
        return settings

    known = {k: v for k, v in stored.items() if k in SettingsRecord.model_fields}
    try:
        return SettingsRecord.model_validate({**default_settings(), **known}).model_dump()
    except ValidationError as e:
        logger.error("Stored settings failed validation", errors=_messages(e))
        raise SettingsError("rest_invalid_stored_value", "The settings data could not be sanitized.", _messages(e))


def update_settings(store: Store, changes: Any) -> Dict[str, Any]:
    """Validate `changes`, merge them over the stored settings and save."""
    if not isinstance(changes, dict):
        raise SettingsError("rest_invalid_params", "Invalid settings data provided.", ["settings: must be an object"])
    try:
        SettingsRecord.model_validate({**default_settings(), **changes})
    except ValidationError as e:
        raise SettingsError("rest_invalid_params", "Invalid settings data provided.", _messages(e))

    settings = {**get_settings(store), **changes}
    store.set_option(OPTION_NAME, settings)
    logger.info("Settings updated", fields=sorted(changes))
    return settings
