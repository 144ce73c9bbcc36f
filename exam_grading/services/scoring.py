"""Scoring engine: turns an exam definition and a candidate's answers into results.

Everything here is pure. The same questions, answers and manual results always
produce the same `GradeResult`, which is what lets a submission be regraded any
number of times without drifting.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from exam_grading.models import QuestionType, SubmissionStatus
from exam_grading.schemas import QuestionResult

AUTO_SCORED_TYPES = {QuestionType.MCQ, QuestionType.SBA}


class GradeResult(BaseModel):
    question_results: Dict[str, QuestionResult]
    score: float
    max_score: float
    status: SubmissionStatus
    graded: bool

    @property
    def requires_manual_review(self) -> bool:
        return not self.graded

    def results_as_json(self) -> Dict[str, dict]:
        """Results in the shape stored on `Submission.question_results`."""
        return {qid: r.model_dump() for qid, r in self.question_results.items()}


def normalize_answer(value: Any) -> str:
    """Trim surrounding whitespace and case-fold. Missing answers become ''."""
    if value is None:
        return ""
    return str(value).strip().casefold()


def _coerce_result(raw: Union[QuestionResult, Mapping[str, Any], None]) -> Optional[QuestionResult]:
    if raw is None or isinstance(raw, QuestionResult):
        return raw
    return QuestionResult.model_validate(raw)


def _score_choice(question, answer: Any, existing: Optional[QuestionResult]) -> QuestionResult:
    given = normalize_answer(answer)
    expected = normalize_answer(question.correct_answer)
    # A blank answer never earns credit, even against a blank key
    correct = given != "" and given == expected
    return QuestionResult(
        score=question.points if correct else 0,
        is_correct=correct,
        feedback=existing.feedback if existing else None,
    )


def _score_theory(question, existing: Optional[QuestionResult]) -> Optional[QuestionResult]:
    """Reuse a manual score if one exists; None means the question still needs a grader."""
    if existing is None:
        return None
    is_correct = existing.is_correct
    if is_correct is None:
        is_correct = existing.score >= question.points / 2
    return QuestionResult(score=existing.score, is_correct=is_correct, feedback=existing.feedback)


def manual_seed(question_results: Mapping[str, Any]) -> Dict[str, QuestionResult]:
    """Stored results that carry a determinate correctness signal.

    A THEORY question still awaiting a grader is stored as score 0 with
    is_correct None; it must not be fed back as if 0 were a manual mark.
    """
    seed: Dict[str, QuestionResult] = {}
    for qid, raw in (question_results or {}).items():
        result = _coerce_result(raw)
        if result is not None and result.is_correct is not None:
            seed[str(qid)] = result
    return seed


def calculate_grade(
    questions: Iterable,
    answers: Mapping[str, Any],
    existing_results: Optional[Mapping[str, Any]] = None,
) -> GradeResult:
    """Score every question of an exam, in exam order.

    Args:
        questions: The exam's questions (objects with id, type, points, correct_answer)
        answers: question id -> raw candidate answer; missing keys count as blank
        existing_results: question id -> previously recorded result. Only THEORY
            questions take their score from here; feedback is carried through for all.

    Returns:
        GradeResult with per-question results, totals and grading status
    """
    existing_results = existing_results or {}
    question_results: Dict[str, QuestionResult] = {}
    total = 0.0
    max_score = 0.0
    requires_manual = False

    for question in questions:
        qid = str(question.id)
        max_score += question.points
        existing = _coerce_result(existing_results.get(qid))

        if question.type in AUTO_SCORED_TYPES:
            result = _score_choice(question, answers.get(qid), existing)
        elif question.type == QuestionType.THEORY:
            result = _score_theory(question, existing)
            if result is None:
                requires_manual = True
                result = QuestionResult(
                    score=0,
                    is_correct=None,
                    feedback=existing.feedback if existing else None,
                )
        else:
            raise ValueError(f"Unknown question type {question.type!r} for question {qid}")

        question_results[qid] = result
        total += result.score

    return GradeResult(
        question_results=question_results,
        score=total,
        max_score=max_score,
        status=SubmissionStatus.PENDING_MANUAL_REVIEW if requires_manual else SubmissionStatus.GRADED,
        graded=not requires_manual,
    )
