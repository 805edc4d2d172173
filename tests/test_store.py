"""Unit tests for the in-memory evaluation store."""

import pytest

from eduadmin.models import Student, TeacherEvaluation
from eduadmin.store import Collection, EvaluationStore, RecordNotFound, paginate, search


@pytest.fixture
def students():
    return Collection('student', Student)


def test_insert_assigns_id_and_timestamp(students):
    stored = students.insert(Student(name='John Doe'))

    assert stored.id
    assert stored.created_at is not None
    assert students.get(stored.id) == stored
    assert len(students) == 1


def test_insert_does_not_mutate_input(students):
    draft = Student(name='John Doe')
    students.insert(draft)

    assert draft.id is None


def test_all_is_insertion_order_and_newest_first_is_reversed(students):
    names = ['A', 'B', 'C']
    for name in names:
        students.insert(Student(name=name))

    assert [s.name for s in students.all()] == names
    assert [s.name for s in students.newest_first()] == ['C', 'B', 'A']


def test_update_keeps_id_position_and_created_at(students):
    first = students.insert(Student(name='A'))
    students.insert(Student(name='B'))

    updated = students.update(first.id, Student(name='A2', major='Math'))

    assert updated.id == first.id
    assert updated.created_at == first.created_at
    assert [s.name for s in students.all()] == ['A2', 'B']


def test_missing_ids_raise_record_not_found(students):
    with pytest.raises(RecordNotFound) as excinfo:
        students.get('nope')
    assert "student record 'nope' not found" == str(excinfo.value)

    with pytest.raises(RecordNotFound):
        students.update('nope', Student(name='X'))
    with pytest.raises(RecordNotFound):
        students.delete('nope')


def test_delete_returns_removed_record(students):
    stored = students.insert(Student(name='A'))

    removed = students.delete(stored.id)

    assert removed.id == stored.id
    assert len(students) == 0


def test_find(students):
    students.insert(Student(name='A', major='Math'))
    students.insert(Student(name='B', major='Physics'))

    assert [s.name for s in students.find(major='Physics')] == ['B']
    assert students.find(major='Art') == []


def test_store_insert_many():
    store = EvaluationStore()
    stored = store.insert_many(store.teacher_evaluations, [
        TeacherEvaluation(student_id='S1', score=70),
        TeacherEvaluation(student_id='S2', score=80),
    ])

    assert len(stored) == 2
    assert [e.student_id for e in store.teacher_evaluations.all()] == ['S1', 'S2']


def test_search_is_case_insensitive():
    records = [Student(name='John Doe', major='Math'), Student(name='Jane Smith', major='Physics')]

    assert [s.name for s in search(records, 'doe', ['name'])] == ['John Doe']
    assert [s.name for s in search(records, 'PHYS', ['name', 'major'])] == ['Jane Smith']
    assert search(records, '', ['name']) == records
    assert search(records, None, ['name']) == records


def test_paginate():
    items = list(range(25))

    page, total = paginate(items, page=2, page_size=10)
    assert page == list(range(10, 20))
    assert total == 25

    page, total = paginate(items, page=3, page_size=10)
    assert page == [20, 21, 22, 23, 24]

    page, _ = paginate(items, page=0, page_size=10)
    assert page == list(range(10))
