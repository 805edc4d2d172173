"""Promotion decisions: merge teacher and graduation evaluations per student."""

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, TypeVar

from eduadmin.models import (
    FinalResult,
    GraduationEvaluation,
    PromotionResult,
    PromotionSummary,
    TeacherEvaluation,
)

TEACHER_SCORE_MIN = 60.0
GRADUATION_SCORE_MIN = 60.0
GPA_MIN = 2.0

REASON_ALL_SATISFIED = 'all promotion conditions satisfied'
REASON_NO_TEACHER_EVALUATION = 'no teacher evaluation yet'
REASON_NO_GRADUATION_EVALUATION = 'no graduation evaluation yet'

R = TypeVar('R')


def as_number(value: Any) -> Optional[float]:
    """
    Coerce a value to a finite float.

    Returns None for missing, NaN, infinite or non-numeric values so the
    caller can treat them as "condition not met".
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        val = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(val) or math.isinf(val):
        return None
    return val


def clean_numeric_value(value: Any) -> float:
    """Like as_number but falls back to 0.0, keeping results JSON compliant."""
    val = as_number(value)
    return 0.0 if val is None else val


def meets(value: Any, threshold: Any) -> bool:
    """Inclusive ``value >= threshold``; anything non-numeric fails."""
    val = as_number(value)
    limit = as_number(threshold)
    if val is None or limit is None:
        return False
    return val >= limit


def round_half_up(value: float, digits: int = 1) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _fmt(value: Any) -> str:
    val = as_number(value)
    if val is None:
        return 'n/a'
    return f'{val:g}'


def latest_by_student(records: Iterable[R]) -> Dict[str, R]:
    """
    Resolve duplicate student ids with last-write-wins.

    Keys keep the order in which a student id was first seen; the value is
    the last record for that id in iteration order.
    """
    latest: Dict[str, R] = {}
    for record in records:
        latest[record.student_id] = record
    return latest


def graduation_mean(evaluation: GraduationEvaluation) -> Optional[float]:
    thesis = as_number(evaluation.thesis_score)
    final_exam = as_number(evaluation.final_exam_score)
    if thesis is None or final_exam is None:
        return None
    return (thesis + final_exam) / 2


def failed_conditions(teacher_score: Any, evaluation: GraduationEvaluation) -> List[str]:
    """
    Check the four promotion conditions.

    Returns one reason clause per failing condition, empty when all pass:
    teacher score >= 60, mean(thesis, final exam) >= 60, GPA >= 2.0 and
    earned credits >= required credits.
    """
    reasons = []
    if not meets(teacher_score, TEACHER_SCORE_MIN):
        reasons.append(f'teacher score too low ({_fmt(teacher_score)})')
    mean = graduation_mean(evaluation)
    if not meets(mean, GRADUATION_SCORE_MIN):
        reasons.append(f'graduation score too low ({_fmt(mean)})')
    if not meets(evaluation.gpa, GPA_MIN):
        reasons.append(f'GPA insufficient ({_fmt(evaluation.gpa)})')
    if not meets(evaluation.total_credits, evaluation.required_credits):
        reasons.append(
            f'credits insufficient ({_fmt(evaluation.total_credits)}/{_fmt(evaluation.required_credits)})'
        )
    return reasons


def _status_value(status: Any) -> str:
    if status is None:
        return ''
    return getattr(status, 'value', str(status))


def _seed_from_teacher(evaluation: TeacherEvaluation) -> Dict[str, Any]:
    score = as_number(evaluation.score)
    return {
        'student_id': evaluation.student_id,
        'student_name': evaluation.student_name or '',
        'teacher_score': round_half_up(score) if score is not None else 0.0,
        'teacher_attitude': clean_numeric_value(evaluation.attitude),
        'teacher_participation': clean_numeric_value(evaluation.participation),
        'graduation_gpa': 0.0,
        'graduation_credits': 0,
        'graduation_status': '',
        'final_result': FinalResult.FAIL,
        'reason': REASON_NO_GRADUATION_EVALUATION,
        'evaluation_date': evaluation.date or '',
    }


def _graduation_fields(evaluation: GraduationEvaluation) -> Dict[str, Any]:
    return {
        'graduation_gpa': clean_numeric_value(evaluation.gpa),
        'graduation_credits': int(clean_numeric_value(evaluation.total_credits)),
        'graduation_status': _status_value(evaluation.status),
        'evaluation_date': evaluation.evaluation_date or '',
    }


def compute_promotion_results(
    teacher_evaluations: Sequence[TeacherEvaluation],
    graduation_evaluations: Sequence[GraduationEvaluation],
) -> List[PromotionResult]:
    """
    Combine teacher and graduation evaluations into one decision per student.

    Students with only a teacher evaluation fail until a graduation record
    exists; students with only a graduation record fail with a note that the
    teacher evaluation is missing. The inputs are read, never modified.
    """
    teacher_latest = latest_by_student(teacher_evaluations)
    graduation_latest = latest_by_student(graduation_evaluations)

    merged: Dict[str, Dict[str, Any]] = {
        student_id: _seed_from_teacher(evaluation)
        for student_id, evaluation in teacher_latest.items()
    }

    for student_id, evaluation in graduation_latest.items():
        entry = merged.get(student_id)
        if entry is None:
            entry = {
                'student_id': student_id,
                'student_name': evaluation.student_name or '',
                'teacher_score': 0.0,
                'teacher_attitude': 0.0,
                'teacher_participation': 0.0,
                'final_result': FinalResult.FAIL,
                'reason': REASON_NO_TEACHER_EVALUATION,
            }
            entry.update(_graduation_fields(evaluation))
            merged[student_id] = entry
            continue

        entry.update(_graduation_fields(evaluation))
        if evaluation.student_name and evaluation.student_name.strip():
            entry['student_name'] = evaluation.student_name
        reasons = failed_conditions(entry['teacher_score'], evaluation)
        entry['final_result'] = FinalResult.FAIL if reasons else FinalResult.PASS
        entry['reason'] = '; '.join(reasons) if reasons else REASON_ALL_SATISFIED

    return [PromotionResult(**entry) for entry in merged.values()]


def summarize_results(results: Sequence[PromotionResult]) -> PromotionSummary:
    """Pass/fail counts and the rounded pass percentage."""
    passed = sum(1 for r in results if r.final_result == FinalResult.PASS)
    total = len(results)
    pass_rate = int(round_half_up(passed * 100.0 / total, 0)) if total else 0
    return PromotionSummary(passed=passed, failed=total - passed, total=total, pass_rate=pass_rate)


SORT_KEYS = {
    'name': lambda r: (r.student_name.lower(), r.student_id),
    'date': lambda r: (r.evaluation_date, r.student_id),
    'student_id': lambda r: r.student_id,
}


def sort_results(results: Sequence[PromotionResult], key: str = 'name', descending: bool = False) -> List[PromotionResult]:
    if key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key '{key}'. Expected one of: {', '.join(SORT_KEYS)}")
    return sorted(results, key=SORT_KEYS[key], reverse=descending)
