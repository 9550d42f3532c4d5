"""Structural validation of the raw declarative document."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from handel.domain.models.handelfile import HandelFile


logger = structlog.get_logger(__name__)


def _format_location(loc: tuple[Any, ...]) -> str:
    return "/".join(str(part) for part in loc) or "<root>"


def format_validation_error(exc: ValidationError) -> list[str]:
    """Turn every pydantic error into a ``"<location>: <message>"`` string."""
    return [f"{_format_location(err['loc'])}: {err['msg']}" for err in exc.errors()]


def validate_schema(document: Any) -> list[str]:
    """Check a raw document against the Handel file schema.

    All violations are reported, not just the first one. An empty list
    means the document can be parsed with :func:`parse_handel_file`.
    """
    if not isinstance(document, Mapping):
        return ["<root>: Handel file must be a mapping"]

    try:
        HandelFile.model_validate(dict(document))
    except ValidationError as exc:
        errors = format_validation_error(exc)
        logger.info("schema_validation_failed", error_count=len(errors))
        return errors
    return []


def parse_handel_file(document: Mapping[str, Any] | HandelFile) -> HandelFile:
    """Parse a document that is known to pass :func:`validate_schema`."""
    if isinstance(document, HandelFile):
        return document
    return HandelFile.model_validate(dict(document))
