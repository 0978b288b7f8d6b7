from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass

from app.skillloop.modules.assessments.service import normalize_question_payload, validate_question_payload

CSV_COLUMNS = ("questionText", "questionType", "options", "correctAnswer", "marks", "difficultyLevel")

TEMPLATE_ROWS = (
    ("What does HTTP stand for?", "MCQ", "HyperText Transfer Protocol|High Transfer Text Protocol|Hyper Tool Transfer Process", "HyperText Transfer Protocol", "2", "BEGINNER"),
    ("Python lists are mutable.", "TRUE_FALSE", "", "true", "1", "BEGINNER"),
    ("The keyword used to define a function in Python is ____.", "FILL_BLANK", "", "def", "1", "BASIC"),
    ("Explain the difference between a process and a thread.", "DESCRIPTIVE", "", "", "5", "INTERMEDIATE"),
)


@dataclass(frozen=True)
class CsvRowError:
    row_number: int
    message: str


def _get(row: dict[str, str], *names: str) -> str:
    for n in names:
        if n in row and row[n] is not None:
            return str(row[n]).strip()
    return ""


def _parse_options(raw: str) -> list[str]:
    """Pipe-separated (a|b|c) or a JSON array."""
    raw = (raw or "").strip()
    if not raw:
        return []
    if raw.startswith("["):
        value = json.loads(raw)
        if not isinstance(value, list):
            raise ValueError("options JSON must be an array")
        return [str(v).strip() for v in value if str(v).strip()]
    return [p.strip() for p in raw.split("|") if p.strip()]


def parse_questions_csv(file_bytes: bytes) -> tuple[list[dict], list[CsvRowError]]:
    """
    Parse a bulk question upload.

    Expected headers: questionText, questionType, options, correctAnswer, marks,
    difficultyLevel (snake_case variants accepted).

    Returns:
      (rows, errors)
    Where each row is a normalized payload for service.add_question().
    """
    text = file_bytes.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV has no header row.")

    rows: list[dict] = []
    errors: list[CsvRowError] = []

    for idx, raw in enumerate(reader, start=2):  # 1 = header
        if not raw or all((v or "").strip() == "" for v in raw.values()):
            continue

        try:
            options = _parse_options(_get(raw, "options", "Options"))
        except (ValueError, json.JSONDecodeError) as e:
            errors.append(CsvRowError(idx, f"Invalid options: {e}"))
            continue

        marks_s = _get(raw, "marks", "Marks")
        try:
            marks = int(float(marks_s)) if marks_s else 1
        except ValueError:
            errors.append(CsvRowError(idx, "Invalid marks. Must be a number."))
            continue

        payload = {
            "question_text": _get(raw, "questionText", "question_text", "Question"),
            "question_type": _get(raw, "questionType", "question_type", "Type").upper(),
            "options": options,
            "correct_answer": _get(raw, "correctAnswer", "correct_answer", "Answer"),
            "marks": marks,
            "difficulty_level": _get(raw, "difficultyLevel", "difficulty_level", "Difficulty").upper() or None,
        }
        problems = validate_question_payload(payload)
        if problems:
            errors.extend(CsvRowError(idx, p) for p in problems)
            continue
        rows.append(normalize_question_payload(payload))

    return rows, errors


def template_csv() -> str:
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(CSV_COLUMNS)
    for row in TEMPLATE_ROWS:
        w.writerow(row)
    return out.getvalue()
