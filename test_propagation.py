"""Propagation engine: scores flow AC -> LO -> RO and follow every upstream edit"""

import pytest

from errors import NotFoundError, ValidationError
from conftest import add_student
from models import AcScore, LoScore, RoScore, LoAcMapping, RoLoMapping, Log, Student, StudentRecord
from services import outcome_store, propagation

LO1_FULL = 0.8 * (0.5 / 0.7) + 0.5 * (0.2 / 0.7)
LO1_AC1_ONLY = 0.8 * (0.5 / 0.7)


def score_of(session, model, field, node_id, student_id):
    row = session.query(model).filter(getattr(model, field) == node_id,
                                      model.student_record_id == student_id).one_or_none()
    return None if row is None else row.value


def lo_score(session, lo_id, student_id):
    return score_of(session, LoScore, 'lo_id', lo_id, student_id)


def ro_score(session, ro_id, student_id):
    return score_of(session, RoScore, 'ro_id', ro_id, student_id)


def enter(session, ac_id, student_id, marks):
    return propagation.record_ac_scores(session, ac_id, [{'student_id': student_id, 'obtained_marks': marks}])


def test_scores_propagate_to_lo_and_ro(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    result = enter(session, h['ac2'], h['alice'], 10)

    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(LO1_FULL)
    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(0.7143, abs=1e-4)
    # RO1 has LO1 as its only prioritized input, so it carries the LO value
    assert ro_score(session, h['ro1'], h['alice']) == pytest.approx(LO1_FULL)
    assert result.learning_outcomes == {h['lo1']}
    assert result.report_outcomes == {h['ro1']}
    assert result.saved == 1


def test_missing_ac_score_contributes_nothing(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)

    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(0.5714, abs=1e-4)
    assert lo_score(session, h['lo1'], h['bob']) is None
    assert ro_score(session, h['ro1'], h['bob']) is None


def test_scoring_only_touches_the_given_students(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, h['ac1'], h['bob'], 4)

    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(LO1_AC1_ONLY)
    assert lo_score(session, h['lo1'], h['bob']) == pytest.approx(0.4 * (0.5 / 0.7))


def test_edge_weights_are_stored_after_recompute(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)

    edges = {edge.ac_id: edge.weight for edge in outcome_store.lo_edges(session, h['lo1'])}
    assert edges[h['ac1']] == pytest.approx(0.5 / 0.7)
    assert edges[h['ac2']] == pytest.approx(0.2 / 0.7)
    assert abs(sum(edges.values()) - 1.0) <= 1e-9


def test_ac_without_prioritized_lo_only_warns(session, hierarchy, scope):
    h = hierarchy
    ac3 = outcome_store.create_assessment_criteria(session, scope, 'AC3', 5, [h['lo1']])
    result = enter(session, ac3.id, h['alice'], 5)

    assert result.learning_outcomes == set()
    assert any('not mapped to any learning outcome with a priority' in w for w in result.warnings)
    assert score_of(session, AcScore, 'ac_id', ac3.id, h['alice']) == pytest.approx(1.0)
    assert lo_score(session, h['lo1'], h['alice']) is None


def test_invalid_entry_rejects_the_whole_batch(session, hierarchy):
    h = hierarchy
    with pytest.raises(ValidationError) as excinfo:
        propagation.record_ac_scores(session, h['ac1'], [
            {'student_id': h['alice'], 'obtained_marks': 7},
            {'student_id': h['bob'], 'obtained_marks': 11},
        ])
    assert 'exceeds max_marks' in excinfo.value.message
    assert session.query(AcScore).count() == 0


def test_unknown_student_is_rejected(session, hierarchy):
    with pytest.raises(NotFoundError):
        enter(session, hierarchy['ac1'], 999, 5)


def test_duplicate_student_in_batch_is_rejected(session, hierarchy):
    h = hierarchy
    with pytest.raises(ValidationError) as excinfo:
        propagation.record_ac_scores(session, h['ac1'], [
            {'student_id': h['alice'], 'obtained_marks': 9},
            {'student_id': h['alice'], 'obtained_marks': 2},
        ])
    assert f"duplicate student_id {h['alice']}" in excinfo.value.details['problems']
    assert session.query(AcScore).count() == 0


@pytest.mark.parametrize('bad_id', [1.5, True, 'abc', [1]])
def test_non_integral_student_id_is_rejected(session, hierarchy, bad_id):
    with pytest.raises(ValidationError) as excinfo:
        propagation.record_ac_scores(session, hierarchy['ac1'], [
            {'student_id': hierarchy['alice'], 'obtained_marks': 9},
            {'student_id': bad_id, 'obtained_marks': 5},
        ])
    assert 'invalid student_id' in excinfo.value.message
    assert session.query(AcScore).count() == 0


def test_integral_student_id_spellings_are_accepted(session, hierarchy):
    h = hierarchy
    propagation.record_ac_scores(session, h['ac1'], [
        {'student_id': str(h['alice']), 'obtained_marks': 8},
        {'student_id': float(h['bob']), 'obtained_marks': 4},
    ])
    assert session.query(AcScore).count() == 2


def test_student_outside_the_ac_class_is_rejected(session, hierarchy):
    h = hierarchy
    student = Student(name='Zed')
    session.add(student)
    session.flush()
    other_year = StudentRecord(student_id=student.id, year='1999-2000', class_name='12', section='A')
    session.add(other_year)
    session.flush()
    other_section = add_student(session, 'Carol', section='B')

    with pytest.raises(ValidationError) as excinfo:
        propagation.record_ac_scores(session, h['ac1'], [
            {'student_id': h['alice'], 'obtained_marks': 9},
            {'student_id': other_year.id, 'obtained_marks': 1},
            {'student_id': other_section.id, 'obtained_marks': 1},
        ])
    assert excinfo.value.details['student_ids'] == sorted([other_year.id, other_section.id])
    assert session.query(AcScore).count() == 0
    assert lo_score(session, h['lo1'], h['alice']) is None


def test_ac_without_section_accepts_every_section_of_its_class(session, hierarchy, scope):
    lo = outcome_store.create_learning_outcome(session, scope, 'LO2', [])
    ac = outcome_store.create_assessment_criteria(session, dict(scope, section=None), 'AC3', 10, [lo.id])
    outcome_store.set_edge_priority(session, LoAcMapping, lo.id, ac.id, 'm')
    carol = add_student(session, 'Carol', section='B')

    enter(session, ac.id, carol.id, 5)
    assert lo_score(session, lo.id, carol.id) == pytest.approx(0.5)


def test_update_only_requires_existing_rows(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    with pytest.raises(NotFoundError):
        propagation.record_ac_scores(session, h['ac1'], [{'student_id': h['bob'], 'obtained_marks': 3}],
                                     update_only=True)

    propagation.record_ac_scores(session, h['ac1'], [{'student_id': h['alice'], 'obtained_marks': 6}],
                                 update_only=True)
    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(0.6 * (0.5 / 0.7))


def test_max_marks_change_rescales_lo_and_ro(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, h['ac2'], h['alice'], 10)

    _, result = propagation.update_assessment_criteria(session, h['ac1'], max_marks=16)

    assert score_of(session, AcScore, 'ac_id', h['ac1'], h['alice']) == pytest.approx(0.5)
    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(0.5)
    assert ro_score(session, h['ro1'], h['alice']) == pytest.approx(0.5)
    assert h['lo1'] in result.learning_outcomes


def test_max_marks_below_recorded_marks_is_rejected(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    with pytest.raises(ValidationError):
        propagation.update_assessment_criteria(session, h['ac1'], max_marks=5)


def test_priority_change_renormalizes_and_drops_unbased_students(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, h['ac2'], h['bob'], 10)
    assert lo_score(session, h['lo1'], h['bob']) == pytest.approx(0.5 * (0.2 / 0.7))

    propagation.set_learning_outcome_priority(session, h['lo1'], h['ac2'], None)

    # AC1 is now the only prioritized input and Bob has no score on it
    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(0.8)
    assert lo_score(session, h['lo1'], h['bob']) is None
    assert ro_score(session, h['ro1'], h['bob']) is None
    edge = session.query(LoAcMapping).filter_by(lo_id=h['lo1'], ac_id=h['ac2']).one()
    assert edge.weight is None


def test_unchanged_priority_skips_recalculation(session, hierarchy):
    h = hierarchy
    result = propagation.set_learning_outcome_priority(session, h['lo1'], h['ac1'], 'H')
    assert result.learning_outcomes == set()
    assert result.warnings


def test_mapping_with_no_priorities_clears_lo_scores(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)

    result = propagation.replace_learning_outcome_mapping(session, h['lo1'], [
        {'ac_id': h['ac1'], 'priority': None},
        {'ac_id': h['ac2'], 'priority': ''},
    ])

    assert lo_score(session, h['lo1'], h['alice']) is None
    assert ro_score(session, h['ro1'], h['alice']) is None
    assert any('no prioritized AC mappings' in w for w in result.warnings)
    assert all(edge.weight is None for edge in outcome_store.lo_edges(session, h['lo1']))


def test_mapping_replacement_rejects_unknown_priority(session, hierarchy):
    h = hierarchy
    with pytest.raises(ValidationError):
        propagation.replace_learning_outcome_mapping(session, h['lo1'], [{'ac_id': h['ac1'], 'priority': 'x'}])


def test_deleting_ac_renormalizes_remaining_edges(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, h['ac2'], h['alice'], 10)

    propagation.delete_assessment_criteria(session, h['ac2'])

    assert session.query(LoAcMapping).filter_by(ac_id=h['ac2']).count() == 0
    assert session.query(AcScore).filter_by(ac_id=h['ac2']).count() == 0
    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(0.8)
    assert ro_score(session, h['ro1'], h['alice']) == pytest.approx(0.8)


def test_deleting_last_lo_removes_ro_scores(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    assert ro_score(session, h['ro1'], h['alice']) is not None

    result = propagation.delete_learning_outcome(session, h['lo1'])

    assert session.query(LoScore).count() == 0
    assert session.query(LoAcMapping).count() == 0
    assert session.query(RoLoMapping).count() == 0
    assert session.query(RoScore).count() == 0
    assert result.report_outcomes == {h['ro1']}
    assert session.query(Log).filter_by(action='DELETE_LEARNING_OUTCOME').count() == 1


def test_unlinking_lo_from_ro_recomputes_the_ro(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)

    _, result = propagation.update_learning_outcome(session, h['lo1'], ro_ids=[])

    assert ro_score(session, h['ro1'], h['alice']) is None
    assert result.report_outcomes == {h['ro1']}


def test_ro_mapping_mixes_los(session, hierarchy, scope):
    h = hierarchy
    lo2 = outcome_store.create_learning_outcome(session, scope, 'LO2', [])
    ac3 = outcome_store.create_assessment_criteria(session, scope, 'AC3', 4, [lo2.id])
    outcome_store.set_edge_priority(session, LoAcMapping, lo2.id, ac3.id, 'm')
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, ac3.id, h['alice'], 1)

    propagation.replace_report_outcome_mapping(session, h['ro1'], [
        {'lo_id': h['lo1'], 'priority': 'h'},
        {'lo_id': lo2.id, 'priority': 'm'},
    ])

    expected = LO1_AC1_ONLY * (0.5 / 0.8) + 0.25 * (0.3 / 0.8)
    assert ro_score(session, h['ro1'], h['alice']) == pytest.approx(expected)


def test_recompute_is_idempotent(session, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, h['ac2'], h['bob'], 15)
    first = {row.student_record_id: row.value for row in session.query(LoScore)}

    propagation.recalculate_learning_outcome(session, h['lo1'])
    propagation.recalculate_learning_outcome(session, h['lo1'])

    second = {row.student_record_id: row.value for row in session.query(LoScore)}
    assert first == second
    assert session.query(LoScore).count() == 2


def test_recalculate_scope_repairs_drifted_scores(session, hierarchy, scope):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    row = session.query(LoScore).filter_by(lo_id=h['lo1'], student_record_id=h['alice']).one()
    row.value = 0.1
    session.flush()

    result = propagation.recalculate_scope(session, {'subject': scope['subject'], 'year': scope['year']})

    assert lo_score(session, h['lo1'], h['alice']) == pytest.approx(LO1_AC1_ONLY)
    assert h['lo1'] in result.learning_outcomes
    assert h['ro1'] in result.report_outcomes
