from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from conftest import SPEC_A, write_spec_file
from specsync.errors import SpecParseError
from specsync.spec_parser import (
    DEFAULT_TITLE,
    FIELD_RULES,
    GRAMMAR_VERSION,
    SpecFileParser,
    extract_title,
    format_spec_datetime,
)

FIXED_NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _parser() -> SpecFileParser:
    return SpecFileParser(clock=lambda: FIXED_NOW)


def test_grammar_table_covers_each_field() -> None:
    assert GRAMMAR_VERSION == 1
    assert [rule.name for rule in FIELD_RULES] == ["phase", "created_at", "updated_at"]


def test_parse_file_extracts_all_fields(specs_dir: Path) -> None:
    path = write_spec_file(specs_dir, SPEC_A, title="Branch guard", phase="tasks")
    meta = _parser().parse_file(path)
    assert meta.id == SPEC_A
    assert meta.name == "Branch guard"
    assert meta.phase == "tasks"
    assert meta.created_at == "2025-11-19T10:47:58"
    assert meta.updated_at == "2025-11-20T08:00:00"


def test_japanese_labels_are_recognised() -> None:
    content = (
        "# 仕様書タイトル\n\n"
        "**フェーズ:** implementation\n"
        "**作成日時:** 2025/11/19 10:47:58\n"
        "**更新日時:** 2025/11/21 09:15:00\n"
    )
    meta = _parser().parse_content(f"{SPEC_A}.md", content)
    assert meta.name == "仕様書タイトル"
    assert meta.phase == "implementation"
    assert meta.updated_at == "2025-11-21T09:15:00"


def test_missing_title_uses_placeholder() -> None:
    meta = _parser().parse_content(f"{SPEC_A}.md", "**Phase:** design\n")
    assert meta.name == DEFAULT_TITLE


def test_title_is_first_heading_line() -> None:
    assert extract_title("intro\n## Second level\n# First\n") == "Second level"
    assert extract_title("#   Padded title   \n") == "Padded title"
    assert extract_title("no heading here") == DEFAULT_TITLE


@pytest.mark.parametrize("phase_line", ["", "**Phase:** shipping\n", "**Phase:**\n"])
def test_missing_or_unknown_phase_defaults_to_requirements(phase_line: str) -> None:
    meta = _parser().parse_content(f"{SPEC_A}.md", f"# T\n{phase_line}")
    assert meta.phase == "requirements"


def test_phase_is_case_insensitive() -> None:
    meta = _parser().parse_content(f"{SPEC_A}.md", "# T\n**Phase:** Testing\n")
    assert meta.phase == "testing"


def test_missing_timestamps_default_to_clock_without_mtime() -> None:
    meta = _parser().parse_content(f"{SPEC_A}.md", "# T\n")
    assert meta.created_at == "2025-01-02T03:04:05"
    assert meta.updated_at == "2025-01-02T03:04:05"


def test_malformed_timestamp_falls_back_to_default() -> None:
    meta = _parser().parse_content(f"{SPEC_A}.md", "# T\n**Updated:** 2025/13/45 99:99:99\n")
    assert meta.updated_at == "2025-01-02T03:04:05"


def test_missing_timestamps_on_disk_use_mtime_and_are_stable(specs_dir: Path) -> None:
    path = write_spec_file(specs_dir, SPEC_A, created=None, updated=None)
    stamp = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc).timestamp()
    os.utime(path, (stamp, stamp))

    first = SpecFileParser(clock=lambda: FIXED_NOW).parse_file(path)
    later = SpecFileParser(clock=lambda: datetime(2030, 1, 1, tzinfo=timezone.utc)).parse_file(path)
    assert first.updated_at == "2024-06-01T12:00:00"
    assert first.created_at == "2024-06-01T12:00:00"
    assert later.updated_at == first.updated_at


def test_invalid_filename_identifier_fails(specs_dir: Path) -> None:
    path = specs_dir / "notes.md"
    path.write_text("# Notes\n", encoding="utf-8")
    with pytest.raises(SpecParseError) as excinfo:
        _parser().parse_file(path)
    assert excinfo.value.path == str(path)


def test_unreadable_file_fails(specs_dir: Path) -> None:
    with pytest.raises(SpecParseError) as excinfo:
        _parser().parse_file(specs_dir / f"{SPEC_A}.md")
    assert isinstance(excinfo.value.cause, OSError)


def test_format_spec_datetime() -> None:
    assert format_spec_datetime("2025-11-20T08:00:00.123Z") == "2025/11/20 08:00:00"
    assert format_spec_datetime("2025-11-20T08:00:00") == "2025/11/20 08:00:00"
