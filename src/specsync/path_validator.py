"""Identifier validation and confined path resolution for spec files."""

from __future__ import annotations

import os
import re
from pathlib import Path

from .errors import InvalidIdentifierError, PathTraversalError
from .logging import get_logger

UUID_V4_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

SPEC_EXTENSION = ".md"


def is_valid_identifier(value: object) -> bool:
    return isinstance(value, str) and UUID_V4_PATTERN.match(value) is not None


def validate_identifier(value: str) -> str:
    if not is_valid_identifier(value):
        raise InvalidIdentifierError(value)
    return value


def resolve_spec_path(
    base_dir: str | os.PathLike[str], identifier: str, extension: str = SPEC_EXTENSION
) -> Path:
    """Return ``base_dir/<identifier><extension>`` or raise.

    The identifier check runs before any filesystem access. The candidate
    path is then canonicalised (symlinks resolved) and must remain a
    descendant of the canonical base directory.
    """
    validate_identifier(identifier)
    base = Path(base_dir).resolve()
    candidate = (base / f"{identifier}{extension}").resolve()
    if base not in candidate.parents:
        get_logger().log_security_event(
            "path_traversal", identifier=identifier, base_dir=str(base), resolved=str(candidate)
        )
        raise PathTraversalError(identifier, str(base))
    return candidate


__all__ = [
    "SPEC_EXTENSION",
    "UUID_V4_PATTERN",
    "is_valid_identifier",
    "resolve_spec_path",
    "validate_identifier",
]
