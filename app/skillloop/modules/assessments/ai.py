"""
Draft assessment questions with a Gemini model.

Drafts are returned for review; nothing here writes to the database.
"""
from __future__ import annotations

import json
import logging

from flask import current_app
from google import genai
from google.genai import types

from app.skillloop.modules.assessments.service import DIFFICULTY_LEVELS, QUESTION_TYPES
from app.skillloop.utils import round_half_up

logger = logging.getLogger(__name__)
logging.getLogger("google_genai").setLevel(logging.WARNING)

MAX_QUESTIONS = 20

RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "description": "List of assessment questions",
    "items": {
        "type": "OBJECT",
        "properties": {
            "questionText": {"type": "STRING"},
            "questionType": {"type": "STRING", "enum": list(QUESTION_TYPES)},
            "options": {
                "type": "ARRAY",
                "items": {"type": "STRING"},
                "description": "Options for MCQ, at least 2. Empty for other types.",
            },
            "correctAnswer": {
                "type": "STRING",
                "description": "MCQ/FILL_BLANK: the answer text. TRUE_FALSE: 'true' or 'false'. DESCRIPTIVE: key points.",
            },
            "marks": {"type": "NUMBER"},
            "difficultyLevel": {"type": "STRING", "enum": list(DIFFICULTY_LEVELS)},
        },
        "required": ["questionText", "questionType", "correctAnswer", "marks", "difficultyLevel"],
    },
}


def build_prompt(topic: str, count: int, difficulty: str, question_types: list[str], instructions: str | None) -> str:
    lines = [
        f'Generate {count} assessment questions about "{topic}".',
        "",
        "Configuration:",
        f"- Difficulty: {difficulty}",
        f"- Question Types: {', '.join(question_types)}",
    ]
    if instructions:
        lines.append(f"- Special Instructions: {instructions}")
    lines += [
        "",
        "Requirements:",
        "1. For MCQ, provide 4 options and make correctAnswer exactly one of them.",
        '2. For TRUE_FALSE, leave options empty; correctAnswer must be "true" or "false".',
        "3. For FILL_BLANK, the answer is a single specific word or short phrase.",
        "4. Keep questions relevant to the skill and level.",
    ]
    return "\n".join(lines)


def validate_ai_item(item: object) -> str | None:
    """Return a problem description, or None when the item is usable."""
    if not isinstance(item, dict):
        return "item is not an object"
    if not str(item.get("questionText") or "").strip():
        return "missing questionText"
    qtype = item.get("questionType")
    if qtype not in QUESTION_TYPES:
        return f"invalid questionType {qtype!r}"
    if item.get("difficultyLevel") not in DIFFICULTY_LEVELS:
        return f"invalid difficultyLevel {item.get('difficultyLevel')!r}"
    marks = item.get("marks")
    if isinstance(marks, bool) or not isinstance(marks, (int, float)) or marks <= 0:
        return "marks must be a positive number"
    if qtype == "MCQ":
        options = item.get("options") or []
        if len(options) < 2:
            return "MCQ needs at least 2 options"
        if item.get("correctAnswer") not in options:
            return "MCQ correctAnswer is not one of the options"
    if qtype == "TRUE_FALSE" and str(item.get("correctAnswer")).lower() not in ("true", "false"):
        return "TRUE_FALSE correctAnswer must be true or false"
    return None


def to_question_payload(item: dict) -> dict:
    return {
        "question_text": item["questionText"].strip(),
        "question_type": item["questionType"],
        "options": item.get("options") or [],
        "correct_answer": str(item.get("correctAnswer") or "").strip(),
        "marks": max(1, round_half_up(item["marks"])),
        "difficulty_level": item["difficultyLevel"],
    }


def generate_ai_questions(
    topic: str,
    count: int,
    difficulty: str,
    question_types: list[str],
    instructions: str | None = None,
) -> dict:
    """
    Returns {"success": bool, "message": str, "data": list[dict]}.
    ``data`` holds question payloads ready for service.add_question().
    """
    api_key = current_app.config.get("GOOGLE_API_KEY")
    if not api_key:
        return {"success": False, "message": "GOOGLE_API_KEY is not configured in the server environment.", "data": []}
    topic = (topic or "").strip()
    if not topic:
        return {"success": False, "message": "Topic is required.", "data": []}
    count = max(1, min(int(count or 1), MAX_QUESTIONS))
    question_types = [t for t in question_types if t in QUESTION_TYPES] or ["MCQ"]

    client = genai.Client(api_key=api_key)
    try:
        response = client.models.generate_content(
            model=current_app.config.get("GEMINI_MODEL") or "gemini-2.5-flash",
            contents=build_prompt(topic, count, difficulty, question_types, instructions),
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=RESPONSE_SCHEMA,
            ),
        )
        data = json.loads(response.text or "[]")
    except json.JSONDecodeError:
        logger.exception("AI question generation returned non-JSON output (topic=%s)", topic)
        return {"success": False, "message": "AI generated invalid data format.", "data": []}
    except Exception as e:  # provider/network errors surface as a message, not a 500
        logger.exception("AI question generation failed (topic=%s)", topic)
        return {"success": False, "message": f"Failed to generate questions: {e}", "data": []}

    if not isinstance(data, list):
        return {"success": False, "message": "AI generated invalid data format.", "data": []}
    for i, item in enumerate(data, start=1):
        problem = validate_ai_item(item)
        if problem:
            logger.warning("AI question %s rejected: %s", i, problem)
            return {"success": False, "message": f"AI generated invalid data format (question {i}: {problem}).", "data": []}

    return {
        "success": True,
        "message": f"Generated {len(data)} question(s).",
        "data": [to_question_payload(item) for item in data],
    }
