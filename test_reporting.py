import pytest

from conftest import add_student
from models import AcScore, Student, StudentRecord
from services import outcome_store, propagation, reporting
from services.score_store import AC, LO, RO


def enter(session, ac_id, student_id, marks):
    propagation.record_ac_scores(session, ac_id, [{'student_id': student_id, 'obtained_marks': marks}])


def test_score_band_edges():
    assert reporting.score_band(0.671) == reporting.BAND_HIGH
    assert reporting.score_band(0.67) == reporting.BAND_MID
    assert reporting.score_band(0.35) == reporting.BAND_MID
    assert reporting.score_band(0.3499) == reporting.BAND_LOW


def test_class_overview_bands_and_rosters(session, scope, hierarchy):
    h = hierarchy
    carol = add_student(session, 'Carol')
    add_student(session, 'Dave')  # no scores; must not drag the average down
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, h['ac1'], h['bob'], 3.5)
    enter(session, h['ac1'], carol.id, 6.7)

    overview = {entry['ac_id']: entry for entry in reporting.class_overview(session, AC, scope)}
    ac1 = overview[h['ac1']]
    assert ac1['ac_name'] == 'AC1'
    assert ac1['average_score'] == pytest.approx((0.8 + 0.35 + 0.67) / 3, abs=1e-4)
    assert ac1['student_counts'] == {'above_0_67': 1, 'between_0_35_0_67': 2, 'below_0_35': 0}
    assert ac1['students']['above_0_67'] == [{'id': h['alice'], 'name': 'Alice'}]
    assert {s['name'] for s in ac1['students']['between_0_35_0_67']} == {'Bob', 'Carol'}

    ac2 = overview[h['ac2']]
    assert ac2['average_score'] is None
    assert sum(ac2['student_counts'].values()) == 0


def test_class_overview_for_derived_tiers(session, scope, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 10)
    enter(session, h['ac1'], h['bob'], 1)

    lo = reporting.class_overview(session, LO, scope)[0]
    assert lo['lo_id'] == h['lo1']
    assert lo['student_counts']['above_0_67'] == 1
    assert lo['student_counts']['below_0_35'] == 1

    ro = reporting.class_overview(session, RO, scope)[0]
    assert ro['ro_id'] == h['ro1']
    assert ro['average_score'] == pytest.approx((1.0 + 0.1) / 2 * (0.5 / 0.7), abs=1e-4)


def test_student_report_averages(session, scope, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)
    enter(session, h['ac2'], h['alice'], 5)

    report = reporting.student_report(session, scope, h['alice'])
    assert report['student_name'] == 'Alice'
    assert [entry['ac_id'] for entry in report['ac_scores']] == [h['ac1'], h['ac2']]
    assert report['avg_ac'] == pytest.approx(round((0.8 + 0.25) / 2, 2))
    expected_lo = 0.8 * (0.5 / 0.7) + 0.25 * (0.2 / 0.7)
    assert report['avg_lo'] == pytest.approx(round(expected_lo, 2))
    assert report['avg_ro'] == pytest.approx(round(expected_lo, 2))


def test_student_report_for_student_without_scores(session, scope, hierarchy):
    report = reporting.student_report(session, scope, hierarchy['bob'])
    assert report['ac_scores'] == []
    assert report['avg_ac'] is None


def test_mapping_tree(session, scope, hierarchy):
    h = hierarchy
    tree = reporting.mapping_tree(session, scope['subject'], scope['year'])
    assert len(tree) == 1
    assert tree[0]['ro_id'] == h['ro1']
    lo = tree[0]['learning_outcomes'][0]
    assert lo['lo_id'] == h['lo1']
    assert lo['priority'] == 'h'
    assert [ac['ac_id'] for ac in lo['assessment_criteria']] == [h['ac1'], h['ac2']]
    assert [ac['priority'] for ac in lo['assessment_criteria']] == ['h', 'l']

    assert reporting.mapping_tree(session, 'History', scope['year']) == []


def test_class_dashboard(session, scope, hierarchy):
    h = hierarchy
    enter(session, h['ac1'], h['alice'], 8)

    dashboard = reporting.class_dashboard(session, scope)
    assert dashboard['ac']['count'] == 2
    assert dashboard['ac']['class_average'] == pytest.approx(0.8)
    assert dashboard['lo']['class_average'] == pytest.approx(0.8 * (0.5 / 0.7), abs=1e-4)
    assert dashboard['student_count'] == 2


def test_class_overview_counts_only_students_in_the_section(session, scope, hierarchy):
    h = hierarchy
    ac3 = outcome_store.create_assessment_criteria(session, dict(scope, section=None), 'AC3', 10, [])
    carol = add_student(session, 'Carol', section='B')
    enter(session, ac3.id, h['alice'], 9)
    enter(session, ac3.id, carol.id, 1)

    section_a = {entry['ac_id']: entry for entry in reporting.class_overview(session, AC, scope)}
    assert set(section_a) == {h['ac1'], h['ac2'], ac3.id}
    assert section_a[ac3.id]['average_score'] == pytest.approx(0.9)
    assert section_a[ac3.id]['students']['above_0_67'] == [{'id': h['alice'], 'name': 'Alice'}]
    assert section_a[ac3.id]['student_counts']['below_0_35'] == 0

    # AC1 and AC2 belong to section A only; AC3 has no section and serves both
    section_b = {entry['ac_id']: entry for entry in reporting.class_overview(session, AC, dict(scope, section='B'))}
    assert set(section_b) == {ac3.id}
    assert section_b[ac3.id]['average_score'] == pytest.approx(0.1)
    assert section_b[ac3.id]['students']['below_0_35'] == [{'id': carol.id, 'name': 'Carol'}]


def test_class_reports_ignore_scores_from_other_years(session, scope, hierarchy):
    h = hierarchy
    student = Student(name='Zed')
    session.add(student)
    session.flush()
    zed = StudentRecord(student_id=student.id, year='1999-2000', class_name='12', section='A')
    session.add(zed)
    session.flush()
    enter(session, h['ac1'], h['alice'], 9)
    # Left over from before enrollment was checked on entry
    session.add(AcScore(student_record_id=zed.id, ac_id=h['ac1'], obtained_marks=1, value=0.1))
    session.flush()

    ac1 = reporting.class_overview(session, AC, scope)[0]
    assert ac1['average_score'] == pytest.approx(0.9)
    assert ac1['student_counts'] == {'above_0_67': 1, 'between_0_35_0_67': 0, 'below_0_35': 0}

    dashboard = reporting.class_dashboard(session, scope)
    assert dashboard['ac']['class_average'] == pytest.approx(0.9)
    assert dashboard['student_count'] == 2
