"""
Tests for assessments: question validation, CSV upload parsing, and the
take/submit/grade lifecycle.
"""
from types import SimpleNamespace

import pytest

from app.skillloop.db import session_scope
from app.skillloop.models import User
from app.skillloop.modules.assessments.ai import to_question_payload, validate_ai_item
from app.skillloop.modules.assessments.models import AssessmentAssignment, AssessmentAttempt
from app.skillloop.modules.assessments.parsers.csv import parse_questions_csv, template_csv
from app.skillloop.modules.assessments.service import (
    add_question,
    assign_assessment,
    create_assessment,
    delete_question,
    publish_assessment,
    validate_question_payload,
)
from app.skillloop.modules.assessments.taking import (
    complete_grading,
    grade_answer,
    is_answer_correct,
    start_attempt,
    submit_attempt,
)
from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry
from app.skillloop.modules.skills.models import SkillCategory
from app.skillloop.modules.skills.service import create_skill
from app.skillloop.modules.system_config.service import update_config
from app.skillloop.utils import ServiceError


def _question(qtype, correct):
    return SimpleNamespace(question_type=qtype, correct_answer=correct)


class TestIsAnswerCorrect:
    """Tests for is_answer_correct()"""

    def test_mcq_exact(self):
        q = _question("MCQ", "Paris")
        assert is_answer_correct(q, "Paris")
        assert is_answer_correct(q, " Paris ")
        assert not is_answer_correct(q, "paris")

    def test_true_false_exact(self):
        assert is_answer_correct(_question("TRUE_FALSE", "true"), " true ")
        assert not is_answer_correct(_question("TRUE_FALSE", "true"), "True")
        assert not is_answer_correct(_question("TRUE_FALSE", "true"), "TRUE")
        assert not is_answer_correct(_question("TRUE_FALSE", "true"), "false")

    def test_fill_blank_case_insensitive(self):
        assert is_answer_correct(_question("FILL_BLANK", "def"), " DEF ")

    def test_unanswered_is_wrong(self):
        assert not is_answer_correct(_question("MCQ", "Paris"), None)

    def test_descriptive_is_manual(self):
        with pytest.raises(ValueError):
            is_answer_correct(_question("DESCRIPTIVE", None), "essay")


class TestValidateQuestionPayload:
    """Tests for validate_question_payload()"""

    def test_valid_mcq(self):
        payload = {"question_text": "Q?", "question_type": "MCQ", "options": ["a", "b"], "correct_answer": "a", "marks": "2"}
        assert validate_question_payload(payload) == []

    def test_mcq_answer_must_be_an_option(self):
        payload = {"question_text": "Q?", "question_type": "MCQ", "options": ["a", "b"], "correct_answer": "c", "marks": 1}
        assert "Correct answer must be one of the options." in validate_question_payload(payload)

    def test_mcq_needs_two_options(self):
        payload = {"question_text": "Q?", "question_type": "MCQ", "options": ["a"], "correct_answer": "a", "marks": 1}
        assert "Multiple-choice questions need at least 2 options." in validate_question_payload(payload)

    def test_descriptive_needs_no_answer(self):
        payload = {"question_text": "Explain.", "question_type": "DESCRIPTIVE", "marks": 5}
        assert validate_question_payload(payload) == []

    def test_bad_type_and_marks(self):
        errors = validate_question_payload({"question_text": "Q?", "question_type": "ESSAY", "correct_answer": "x", "marks": "0"})
        assert any(e.startswith("Invalid question type") for e in errors)
        assert "Marks must be a positive whole number." in errors


class TestParseQuestionsCsv:
    """Tests for parse_questions_csv()"""

    def test_template_parses_cleanly(self):
        rows, errors = parse_questions_csv(template_csv().encode("utf-8"))
        assert errors == []
        assert [r["question_type"] for r in rows] == ["MCQ", "TRUE_FALSE", "FILL_BLANK", "DESCRIPTIVE"]
        assert rows[0]["options"][0] == "HyperText Transfer Protocol"
        assert rows[1]["options"] == ["true", "false"]
        assert rows[3]["correct_answer"] is None

    def test_json_options_and_default_marks(self):
        data = (
            "questionText,questionType,options,correctAnswer,marks,difficultyLevel\n"
            '"Pick one",mcq,"[""x"", ""y""]",y,,beginner\n'
        )
        rows, errors = parse_questions_csv(data.encode("utf-8"))
        assert errors == []
        assert rows[0]["options"] == ["x", "y"]
        assert rows[0]["marks"] == 1
        assert rows[0]["difficulty_level"] == "BEGINNER"

    def test_row_errors_keep_row_numbers(self):
        data = (
            "questionText,questionType,options,correctAnswer,marks,difficultyLevel\n"
            "Good,TRUE_FALSE,,true,1,\n"
            "Bad marks,TRUE_FALSE,,true,many,\n"
            '"Bad options",MCQ,"[""x""",x,1,\n'
            "\n"
            "Wrong answer,MCQ,a|b,c,1,\n"
        )
        rows, errors = parse_questions_csv(data.encode("utf-8"))
        assert len(rows) == 1
        assert errors[0].row_number == 3
        assert errors[0].message == "Invalid marks. Must be a number."
        assert errors[1].row_number == 4
        assert errors[1].message.startswith("Invalid options")
        assert errors[2].message == "Correct answer must be one of the options."

    def test_empty_file(self):
        with pytest.raises(ValueError):
            parse_questions_csv(b"")

    def test_bom_is_ignored(self):
        data = "\ufeffquestionText,questionType,options,correctAnswer,marks\nQ,FILL_BLANK,,x,2\n".encode("utf-8")
        rows, errors = parse_questions_csv(data)
        assert errors == []
        assert rows[0]["question_text"] == "Q"


class TestValidateAiItem:
    """Tests for validate_ai_item() and to_question_payload()"""

    def _item(self, **overrides):
        item = {
            "questionText": "Lists are mutable.",
            "questionType": "TRUE_FALSE",
            "correctAnswer": "true",
            "marks": 2,
            "difficultyLevel": "BEGINNER",
        }
        item.update(overrides)
        return item

    def test_usable_item(self):
        assert validate_ai_item(self._item()) is None

    @pytest.mark.parametrize("marks", [True, False, 0, -1, "2", None])
    def test_rejects_bad_marks(self, marks):
        assert validate_ai_item(self._item(marks=marks)) == "marks must be a positive number"

    def test_fractional_marks_round_half_up(self):
        assert to_question_payload(self._item(marks=2.5))["marks"] == 3
        assert to_question_payload(self._item(marks=0.2))["marks"] == 1


def _users(s):
    return {u.email.split("@")[0]: u for u in s.query(User).all()}


def _published_assessment(s, trainer, *, skill_id=None, descriptive=False):
    a = create_assessment(
        s,
        {"title": "Python Basics", "total_marks": "4", "duration_minutes": "30", "passing_score": "50", "skill_id": skill_id},
        trainer,
    )
    add_question(s, a, {"question_text": "2+2?", "question_type": "MCQ", "options": ["3", "4"], "correct_answer": "4", "marks": 2}, trainer)
    if descriptive:
        add_question(s, a, {"question_text": "Explain GIL.", "question_type": "DESCRIPTIVE", "marks": 2}, trainer)
    else:
        add_question(s, a, {"question_text": "Lists are mutable.", "question_type": "TRUE_FALSE", "correct_answer": "true", "marks": 2}, trainer)
    publish_assessment(s, a, trainer)
    return a


def test_publish_requires_marks_to_add_up(app):
    with app.app_context(), session_scope(app) as s:
        trainer = _users(s)["trainer"]
        a = create_assessment(s, {"title": "Draft", "total_marks": "5", "duration_minutes": "10"}, trainer)
        add_question(s, a, {"question_text": "Q", "question_type": "FILL_BLANK", "correct_answer": "x", "marks": 2}, trainer)
        with pytest.raises(ServiceError, match="must equal the assessment total"):
            publish_assessment(s, a, trainer)
        with pytest.raises(ServiceError, match="exceed the assessment total"):
            add_question(s, a, {"question_text": "Q2", "question_type": "FILL_BLANK", "correct_answer": "y", "marks": 4}, trainer)
        assert a.passing_score == 70  # system default


def test_delete_question_renumbers(app):
    with app.app_context(), session_scope(app) as s:
        trainer = _users(s)["trainer"]
        a = create_assessment(s, {"title": "Order", "total_marks": "3", "duration_minutes": "10"}, trainer)
        q1, q2, q3 = (
            add_question(s, a, {"question_text": f"Q{i}", "question_type": "FILL_BLANK", "correct_answer": "x", "marks": 1}, trainer)
            for i in range(1, 4)
        )
        delete_question(s, q1, trainer)
        assert [q.order_index for q in sorted(a.questions, key=lambda q: q.id)] == [1, 2]
        assert {q.question_text for q in a.questions} == {"Q2", "Q3"}


def test_objective_attempt_finalizes_and_credits_skill(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        trainer, learner = users["trainer"], users["learner"]
        category = s.query(SkillCategory).filter(SkillCategory.name == "Other").one()
        skill = create_skill(s, {"name": "Python", "category_id": category.id}, users["admin"])
        a = _published_assessment(s, trainer, skill_id=skill.id)

        with pytest.raises(ServiceError, match="not been assigned"):
            start_attempt(s, a, learner)
        assign_assessment(s, a, [learner.id], None, trainer)

        attempt = start_attempt(s, a, learner)
        assert start_attempt(s, a, learner).id == attempt.id  # resumes
        q_mcq, q_tf = sorted(a.questions, key=lambda q: q.order_index)
        submit_attempt(s, attempt, learner, {q_mcq.id: "4", q_tf.id: " true "})

        assert attempt.status == "completed"
        assert attempt.score == 4
        assert attempt.percentage == 100.0
        assert attempt.passed is True
        assignment = s.query(AssessmentAssignment).filter_by(assessment_id=a.id, user_id=learner.id).one()
        assert assignment.status == "COMPLETED"
        entry = s.query(SkillMatrixEntry).filter_by(user_id=learner.id, skill_id=skill.id).one()
        assert entry.current_level == "EXPERT"
        assert entry.status == "completed"


def test_unanswered_questions_score_zero(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        a = _published_assessment(s, users["trainer"])
        assign_assessment(s, a, [users["learner"].id], None, users["trainer"])
        attempt = start_attempt(s, a, users["learner"])
        q_mcq = min(a.questions, key=lambda q: q.order_index)
        submit_attempt(s, attempt, users["learner"], {q_mcq.id: "3"})
        assert attempt.score == 0
        assert attempt.passed is False


def test_descriptive_attempt_goes_through_grading(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        trainer, learner = users["trainer"], users["learner"]
        a = _published_assessment(s, trainer, descriptive=True)
        assign_assessment(s, a, [learner.id], None, trainer)
        attempt = start_attempt(s, a, learner)
        q_mcq, q_desc = sorted(a.questions, key=lambda q: q.order_index)
        submit_attempt(s, attempt, learner, {q_mcq.id: "4", q_desc.id: "It serialises bytecode execution."})
        assert attempt.status == "grading"
        assert attempt.score == 2

        with pytest.raises(ServiceError, match="still need marks"):
            complete_grading(s, attempt, trainer)
        answer = next(x for x in attempt.answers if x.question_id == q_desc.id)
        with pytest.raises(ServiceError, match="between 0 and 2"):
            grade_answer(s, answer, 3, None, trainer)

        assert grade_answer(s, answer, 1, "Partly right", trainer) is True
        assert attempt.status == "completed"
        assert attempt.score == 3
        assert attempt.percentage == 75.0
        assert attempt.passed is True


def test_retakes_follow_config(app):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        a = _published_assessment(s, users["trainer"])
        assign_assessment(s, a, [users["learner"].id], None, users["trainer"])
        submit_attempt(s, start_attempt(s, a, users["learner"]), users["learner"], {})

        update_config(s, {"allowRetakes": False}, users["admin"])
        with pytest.raises(ServiceError, match="Retakes are not allowed"):
            start_attempt(s, a, users["learner"])

        update_config(s, {"allowRetakes": True, "maxRetakeAttempts": 1}, users["admin"])
        submit_attempt(s, start_attempt(s, a, users["learner"]), users["learner"], {})
        with pytest.raises(ServiceError, match="used all 1 retake"):
            start_attempt(s, a, users["learner"])
        assert s.query(AssessmentAttempt).filter_by(assessment_id=a.id).count() == 2


def test_learner_takes_assessment_over_http(app, client):
    with app.app_context(), session_scope(app) as s:
        users = _users(s)
        a = _published_assessment(s, users["trainer"])
        assign_assessment(s, a, [users["learner"].id], None, users["trainer"])
        assessment_id = a.id
        q_ids = [q.id for q in sorted(a.questions, key=lambda q: q.order_index)]

    client.post("/auth/login", data={"email": "learner@example.com", "password": "pw"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = "t"

    r = client.get("/assessments/my")
    assert r.status_code == 200
    assert b"Python Basics" in r.data

    r = client.post(f"/assessments/{assessment_id}/start", data={"csrf_token": "t"})
    assert r.status_code == 302
    attempt_path = r.headers["Location"]
    attempt_id = int(attempt_path.rstrip("/").rsplit("/", 1)[1])
    assert client.get(f"/assessments/attempts/{attempt_id}").status_code == 200

    r = client.post(
        f"/assessments/attempts/{attempt_id}/submit",
        data={"csrf_token": "t", f"answer_{q_ids[0]}": "4", f"answer_{q_ids[1]}": "false"},
        follow_redirects=True,
    )
    assert r.status_code == 200
    with app.app_context(), session_scope(app) as s:
        attempt = s.get(AssessmentAttempt, attempt_id)
        assert attempt.status == "completed"
        assert attempt.score == 2
        assert attempt.passed is True
