from db_integrity_check import check_integrity
from db_migrations import check_and_update_database
from models import LoAcMapping, LoScore, AcScore
from services import propagation


def test_clean_database_has_no_issues(session, hierarchy):
    propagation.record_ac_scores(session, hierarchy['ac1'], [{'student_id': hierarchy['alice'], 'obtained_marks': 8}])
    issues = check_integrity(session)
    assert not any(issues.values()), issues


def test_detects_broken_weights_and_stale_scores(session, hierarchy):
    h = hierarchy
    propagation.record_ac_scores(session, h['ac1'], [{'student_id': h['alice'], 'obtained_marks': 8}])

    # Clear priorities behind the engine's back
    for edge in session.query(LoAcMapping).filter_by(lo_id=h['lo1']):
        edge.priority = None
    session.flush()

    issues = check_integrity(session)
    assert issues['weight_sums']
    assert any(f"lo_id {h['lo1']}" in issue for issue in issues['stale_derived_scores'])


def test_detects_out_of_range_and_orphaned_scores(session, hierarchy):
    h = hierarchy
    session.add(AcScore(student_record_id=h['alice'], ac_id=h['ac1'], obtained_marks=12, value=1.2))
    session.add(LoScore(student_record_id=h['alice'], lo_id=9999, value=0.5))
    session.flush()

    issues = check_integrity(session)
    assert any('value 1.2' in issue for issue in issues['score_ranges'])
    assert any('learning_outcome 9999' in issue for issue in issues['orphaned_references'])


def test_schema_check_on_current_schema_adds_nothing(app):
    assert check_and_update_database(app) == []
