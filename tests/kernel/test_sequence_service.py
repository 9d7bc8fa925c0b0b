"""Tests for the locked, gap-free sequence counters."""

from uuid import uuid4

from costcontrol_kernel.services.sequence_service import (
    SequenceService,
    certification_sequence,
    version_sequence,
)


def test_first_value_is_one(session):
    assert SequenceService(session).next_value("test:a") == 1


def test_values_increase(session):
    sequences = SequenceService(session)
    assert [sequences.next_value("test:b") for _ in range(3)] == [1, 2, 3]
    assert sequences.current_value("test:b") == 3


def test_names_are_independent(session):
    sequences = SequenceService(session)
    sequences.next_value("test:c")
    sequences.next_value("test:c")
    assert sequences.next_value("test:d") == 1


def test_unused_sequence_has_no_value(session):
    assert SequenceService(session).current_value("test:never") is None


def test_reset(session):
    sequences = SequenceService(session)
    sequences.next_value("test:e")
    sequences.reset("test:e", 10)
    assert sequences.next_value("test:e") == 11


def test_rollback_returns_the_number(session):
    sequences = SequenceService(session)
    sequences.next_value("test:f")
    session.commit()
    sequences.next_value("test:f")
    session.rollback()
    assert sequences.next_value("test:f") == 2


def test_per_project_names():
    project_id = uuid4()
    assert certification_sequence(project_id) == f"certification:{project_id}"
    assert version_sequence(project_id) != certification_sequence(project_id)


def test_release_latest_value(session):
    sequences = SequenceService(session)
    sequences.next_value("test:g")
    second = sequences.next_value("test:g")
    assert sequences.release("test:g", second) is True
    assert sequences.next_value("test:g") == second


def test_release_older_value_is_ignored(session):
    sequences = SequenceService(session)
    first = sequences.next_value("test:h")
    sequences.next_value("test:h")
    assert sequences.release("test:h", first) is False
    assert sequences.release("test:never", 1) is False
    assert sequences.current_value("test:h") == 2
