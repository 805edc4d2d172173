"""Unit tests for the promotion aggregator."""

import math

import pytest

from eduadmin.models import FinalResult, GraduationEvaluation, PromotionResult, TeacherEvaluation
from eduadmin.promotion import (
    REASON_ALL_SATISFIED,
    REASON_NO_TEACHER_EVALUATION,
    compute_promotion_results,
    latest_by_student,
    meets,
    round_half_up,
    sort_results,
    summarize_results,
)


def teacher(student_id='S1', score=75.0, attitude=80.0, participation=70.0, name='Alice', date='2024-05-01'):
    return TeacherEvaluation(student_id=student_id, student_name=name, score=score,
                             attitude=attitude, participation=participation, date=date)


def graduation(student_id='S1', gpa=3.0, total_credits=130, required_credits=120,
               thesis_score=70.0, final_exam_score=65.0, name='Alice', evaluation_date='2024-06-01',
               status='passed'):
    return GraduationEvaluation(student_id=student_id, student_name=name, gpa=gpa,
                                total_credits=total_credits, required_credits=required_credits,
                                thesis_score=thesis_score, final_exam_score=final_exam_score,
                                status=status, evaluation_date=evaluation_date)


def by_id(results):
    return {r.student_id: r for r in results}


def test_all_conditions_pass():
    """A student meeting every threshold passes with the fixed reason."""
    results = compute_promotion_results([teacher()], [graduation()])

    assert len(results) == 1
    result = results[0]
    assert result.final_result == FinalResult.PASS
    assert result.reason == REASON_ALL_SATISFIED
    assert result.teacher_score == 75.0
    assert result.teacher_attitude == 80.0
    assert result.teacher_participation == 70.0
    assert result.graduation_gpa == 3.0
    assert result.graduation_credits == 130
    assert result.graduation_status == 'passed'
    # Graduation date takes precedence
    assert result.evaluation_date == '2024-06-01'


def test_credits_only_failure():
    """Only the credits clause is reported when the other three conditions pass."""
    results = compute_promotion_results([teacher()], [graduation(total_credits=100)])

    result = results[0]
    assert result.final_result == FinalResult.FAIL
    assert result.reason == 'credits insufficient (100/120)'


def test_every_condition_fails():
    results = compute_promotion_results(
        [teacher(score=40)],
        [graduation(gpa=1.5, total_credits=90, thesis_score=50, final_exam_score=40)],
    )

    reason = results[0].reason
    assert results[0].final_result == FinalResult.FAIL
    assert reason.split('; ') == [
        'teacher score too low (40)',
        'graduation score too low (45)',
        'GPA insufficient (1.5)',
        'credits insufficient (90/120)',
    ]


def test_graduation_only_student():
    """Missing teacher evaluation: fail, zeroed teacher fields, explanatory reason."""
    results = compute_promotion_results([], [graduation(student_id='S2', name='Bob')])

    result = results[0]
    assert result.student_id == 'S2'
    assert result.student_name == 'Bob'
    assert result.final_result == FinalResult.FAIL
    assert result.reason == REASON_NO_TEACHER_EVALUATION
    assert 'teacher evaluation' in result.reason
    assert result.teacher_score == 0.0
    assert result.teacher_attitude == 0.0
    assert result.teacher_participation == 0.0
    assert result.graduation_gpa == 3.0


def test_teacher_only_student_fails():
    results = compute_promotion_results([teacher(score=95)], [])

    result = results[0]
    assert result.final_result == FinalResult.FAIL
    assert result.graduation_gpa == 0.0
    assert result.graduation_credits == 0
    assert result.graduation_status == ''
    assert result.evaluation_date == '2024-05-01'


def test_output_size_matches_distinct_students():
    teachers = [teacher('S1'), teacher('S2'), teacher('S3')]
    graduations = [graduation('S4'), graduation('S5')]

    results = compute_promotion_results(teachers, graduations)

    assert len(results) == 5
    assert {r.student_id for r in results} == {'S1', 'S2', 'S3', 'S4', 'S5'}


def test_one_result_per_student_with_overlap():
    teachers = [teacher('S1'), teacher('S2')]
    graduations = [graduation('S2'), graduation('S3')]

    results = compute_promotion_results(teachers, graduations)

    assert sorted(r.student_id for r in results) == ['S1', 'S2', 'S3']


def test_duplicate_teacher_records_last_wins():
    """Two teacher records for S1: only the second score is reflected."""
    results = compute_promotion_results(
        [teacher(score=50), teacher(score=90)],
        [graduation()],
    )

    assert len(results) == 1
    assert results[0].teacher_score == 90.0
    assert results[0].final_result == FinalResult.PASS


def test_duplicate_graduation_records_last_wins():
    results = compute_promotion_results(
        [teacher()],
        [graduation(gpa=3.5), graduation(gpa=1.0)],
    )

    assert results[0].graduation_gpa == 1.0
    assert results[0].reason == 'GPA insufficient (1)'


def test_duplicate_graduation_only_records_keep_missing_teacher_reason():
    results = compute_promotion_results([], [graduation('S9', gpa=3.5), graduation('S9', gpa=2.5)])

    assert len(results) == 1
    assert results[0].graduation_gpa == 2.5
    assert results[0].reason == REASON_NO_TEACHER_EVALUATION


def test_gpa_boundary_is_inclusive():
    passed = compute_promotion_results([teacher()], [graduation(gpa=2.0)])[0]
    failed = compute_promotion_results([teacher()], [graduation(gpa=1.999)])[0]

    assert passed.final_result == FinalResult.PASS
    assert failed.final_result == FinalResult.FAIL
    assert failed.reason.startswith('GPA insufficient')


def test_score_boundaries_are_inclusive():
    result = compute_promotion_results(
        [teacher(score=60)],
        [graduation(thesis_score=60, final_exam_score=60, total_credits=120)],
    )[0]

    assert result.final_result == FinalResult.PASS


def test_teacher_score_rounded_half_up():
    result = compute_promotion_results([teacher(score=59.95)], [graduation()])[0]

    assert result.teacher_score == 60.0
    assert result.final_result == FinalResult.PASS


def test_malformed_numbers_fail_conditions_without_raising():
    """NaN and missing values never raise; they simply fail their threshold."""
    bad_teacher = TeacherEvaluation.model_construct(
        student_id='S1', student_name='Alice', score=float('nan'),
        attitude=None, participation='n/a', date='2024-05-01',
    )
    bad_graduation = GraduationEvaluation.model_construct(
        student_id='S1', student_name='Alice', gpa=float('nan'), total_credits=None,
        required_credits=120, thesis_score='abc', final_exam_score=70.0,
        status='pending', evaluation_date='2024-06-01',
    )

    result = compute_promotion_results([bad_teacher], [bad_graduation])[0]

    assert result.final_result == FinalResult.FAIL
    assert result.teacher_score == 0.0
    assert result.teacher_attitude == 0.0
    assert result.teacher_participation == 0.0
    assert result.graduation_gpa == 0.0
    assert result.graduation_credits == 0
    assert 'GPA insufficient (n/a)' in result.reason
    assert 'graduation score too low (n/a)' in result.reason
    assert 'credits insufficient (n/a/120)' in result.reason


def test_inputs_not_mutated_and_idempotent():
    teachers = [teacher('S1'), teacher('S2', score=30)]
    graduations = [graduation('S1'), graduation('S3')]
    teachers_before = [t.model_dump() for t in teachers]
    graduations_before = [g.model_dump() for g in graduations]

    first = compute_promotion_results(teachers, graduations)
    second = compute_promotion_results(teachers, graduations)

    assert [r.model_dump() for r in first] == [r.model_dump() for r in second]
    assert [t.model_dump() for t in teachers] == teachers_before
    assert [g.model_dump() for g in graduations] == graduations_before


def test_graduation_name_replaces_teacher_name_when_present():
    results = compute_promotion_results(
        [teacher(name='A. Nguyen'), teacher('S2', name='Bob')],
        [graduation(name='Alice Nguyen'), graduation('S2', name='  ')],
    )

    names = {r.student_id: r.student_name for r in results}
    assert names == {'S1': 'Alice Nguyen', 'S2': 'Bob'}


def test_latest_by_student_keeps_first_seen_order():
    records = [teacher('S2', score=10), teacher('S1'), teacher('S2', score=20)]

    latest = latest_by_student(records)

    assert list(latest) == ['S2', 'S1']
    assert latest['S2'].score == 20


def test_meets():
    assert meets(60, 60) == True
    assert meets(59.9, 60) == False
    assert meets(None, 60) == False
    assert meets(float('nan'), 60) == False
    assert meets('70', 60) == True
    assert meets(70, None) == False
    assert meets(True, 0) == False


def test_round_half_up():
    assert round_half_up(59.95) == 60.0
    assert round_half_up(72.44) == 72.4
    assert round_half_up(0.0) == 0.0


def test_summarize_results():
    results = compute_promotion_results(
        [teacher('S1'), teacher('S2', score=10), teacher('S3')],
        [graduation('S1'), graduation('S2'), graduation('S3')],
    )

    summary = summarize_results(results)

    assert summary.passed == 2
    assert summary.failed == 1
    assert summary.total == 3
    assert summary.pass_rate == 67


def test_summarize_empty():
    summary = summarize_results([])

    assert summary.total == 0
    assert summary.pass_rate == 0


def test_sort_results():
    results = [
        PromotionResult(student_id='2', student_name='bob', evaluation_date='2024-01-02'),
        PromotionResult(student_id='1', student_name='Alice', evaluation_date='2024-01-03'),
        PromotionResult(student_id='3', student_name='Carol', evaluation_date='2024-01-01'),
    ]

    assert [r.student_id for r in sort_results(results, 'name')] == ['1', '2', '3']
    assert [r.student_id for r in sort_results(results, 'date', descending=True)] == ['1', '2', '3']
    assert [r.student_id for r in sort_results(results, 'student_id')] == ['1', '2', '3']

    with pytest.raises(ValueError):
        sort_results(results, 'gpa')
