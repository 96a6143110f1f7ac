"""Spec file metadata extraction.

A spec file is Markdown named ``<uuid>.md``. Metadata is pulled out with a
small, versioned grammar: each field has a regular expression, a converter
and a default. Extraction of one field never fails the whole parse; only
an unreadable file or an invalid filename identifier does.

Recognised layout (English or the original Japanese labels)::

    # Title of the spec
    **Phase:** design            (or **フェーズ:** design)
    **Created:** 2025/11/19 10:47:58
    **Updated:** 2025/11/20 08:00:00

Missing ``Created``/``Updated`` default to the file's modification time
when parsing from disk, so an untouched file re-parses to the same value.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, cast

from .errors import SpecParseError
from .models import DEFAULT_PHASE, SpecMetadata, SpecPhase, is_phase, parse_timestamp
from .path_validator import SPEC_EXTENSION, is_valid_identifier

GRAMMAR_VERSION = 1
DEFAULT_TITLE = "Untitled"
SPEC_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

_TITLE_RE = re.compile(r"^\s*#+\s*(.*?)\s*$")
_DATE_VALUE = r"(\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2})"


def _labelled(*labels: str, value: str) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(label) for label in labels)
    return re.compile(rf"\*\*(?:{alternatives}):\*\*[ \t]*{value}", re.IGNORECASE)


def _to_phase(raw: str) -> SpecPhase | None:
    candidate = raw.strip().lower()
    return cast(SpecPhase, candidate) if is_phase(candidate) else None


def _to_iso(raw: str) -> str | None:
    try:
        parsed = datetime.strptime(" ".join(raw.split()), SPEC_DATE_FORMAT)
    except ValueError:
        return None
    return parsed.strftime("%Y-%m-%dT%H:%M:%S")


@dataclass(frozen=True)
class FieldRule:
    """One metadata field: pattern capture -> converter -> default.

    ``convert`` returns None for a captured value it rejects, which sends
    the field to its default exactly like a missing match.
    """

    name: str
    pattern: re.Pattern[str]
    convert: Callable[[str], Any]
    default: str  # 'initial_phase' | 'timestamp'


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule(
        "phase", _labelled("Phase", "フェーズ", value=r"(\w+)"), _to_phase, "initial_phase"
    ),
    FieldRule(
        "created_at", _labelled("Created", "作成日時", value=_DATE_VALUE), _to_iso, "timestamp"
    ),
    FieldRule(
        "updated_at", _labelled("Updated", "更新日時", value=_DATE_VALUE), _to_iso, "timestamp"
    ),
)


def format_spec_datetime(iso_value: str) -> str:
    """Render an ISO timestamp in the spec file's ``YYYY/MM/DD HH:MM:SS`` form (UTC)."""
    return parse_timestamp(iso_value).strftime(SPEC_DATE_FORMAT)


def extract_title(content: str) -> str:
    for line in content.splitlines():
        match = _TITLE_RE.match(line)
        if match:
            return match.group(1) or DEFAULT_TITLE
    return DEFAULT_TITLE


class SpecFileParser:
    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def parse_file(self, path: str | os.PathLike[str]) -> SpecMetadata:
        file_path = Path(path)
        self._extract_id(file_path)
        try:
            content = file_path.read_text(encoding="utf-8")
            mtime = file_path.stat().st_mtime
        except (OSError, UnicodeDecodeError) as exc:
            message = f"Failed to read spec file: {file_path}"
            raise SpecParseError(message, str(file_path), exc) from exc
        return self.parse_content(file_path, content, mtime=mtime)

    def parse_content(
        self, path: str | os.PathLike[str], content: str, *, mtime: float | None = None
    ) -> SpecMetadata:
        file_path = Path(path)
        spec_id = self._extract_id(file_path)
        fallback = self._fallback_timestamp(mtime)
        fields: dict[str, Any] = {}
        for rule in FIELD_RULES:
            match = rule.pattern.search(content)
            value = rule.convert(match.group(1)) if match else None
            if value is None:
                value = DEFAULT_PHASE if rule.default == "initial_phase" else fallback
            fields[rule.name] = value
        return SpecMetadata(
            id=spec_id,
            name=extract_title(content),
            phase=fields["phase"],
            created_at=fields["created_at"],
            updated_at=fields["updated_at"],
        )

    def _fallback_timestamp(self, mtime: float | None) -> str:
        if mtime is not None:
            moment = datetime.fromtimestamp(mtime, tz=timezone.utc)
        else:
            moment = self._clock()
        return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")

    @staticmethod
    def _extract_id(path: Path) -> str:
        name = path.name
        stem = name[: -len(SPEC_EXTENSION)] if name.endswith(SPEC_EXTENSION) else path.stem
        if not is_valid_identifier(stem):
            raise SpecParseError(f"Invalid UUID format in filename: {stem}", str(path))
        return stem


__all__ = [
    "DEFAULT_TITLE",
    "FIELD_RULES",
    "FieldRule",
    "GRAMMAR_VERSION",
    "SpecFileParser",
    "extract_title",
    "format_spec_datetime",
]
