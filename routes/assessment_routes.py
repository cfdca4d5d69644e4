from flask import Blueprint, jsonify
from models import db, AcScore, AssessmentCriteria
from routes.utility_routes import (
    scope_from_headers, int_arg, body_int, json_body, id_list, run_in_transaction, mutation_response
)
from services import outcome_store, propagation, reporting
from errors import ValidationError
import logging

assessment_bp = Blueprint('assessment', __name__)

AC_REQUIRED_HEADERS = ('subject', 'classname', 'year', 'quarter')


@assessment_bp.route('/assessment-criteria', methods=['GET'])
def get_assessment_criteria():
    """List ACs in scope, or one AC when ac_id is given"""
    ac_id = int_arg('ac_id', required=False, aliases=('id',))
    if ac_id is not None:
        ac = outcome_store.get_node(db.session, AssessmentCriteria, ac_id)
        data = reporting.node_to_dict(ac)
        data['learning_outcomes'] = [{'lo_id': edge.lo_id, 'priority': edge.priority, 'weight': edge.weight}
                                     for edge in ac.lo_mappings]
        return jsonify({'success': True, 'assessment_criteria': data})

    scope = scope_from_headers(required=('subject', 'year'))
    return jsonify({'success': True,
                    'assessment_criteria': reporting.list_assessment_criteria(db.session, scope)})


@assessment_bp.route('/assessment-criteria', methods=['POST'])
def add_assessment_criteria():
    scope = scope_from_headers(required=AC_REQUIRED_HEADERS)
    data = json_body()
    lo_ids = id_list(data, 'lo_ids', alias='lo_id') or []

    ac = run_in_transaction(
        "add assessment criteria",
        lambda: outcome_store.create_assessment_criteria(
            db.session, scope, data.get('name'), data.get('max_marks'), lo_ids))
    logging.info(f"Added AC {ac.id} ({ac.name}) linked to LOs {lo_ids}")
    return mutation_response('Assessment criteria added', status=201, insertedId=ac.id)


@assessment_bp.route('/assessment-criteria', methods=['PUT'])
def update_assessment_criteria():
    """Rename, change max_marks or change the linked LOs of an AC"""
    ac_id = int_arg('ac_id', aliases=('id',))
    data = json_body()
    if not any(key in data for key in ('name', 'max_marks', 'lo_ids', 'lo_id')):
        raise ValidationError("Nothing to update. Provide name, max_marks or lo_ids.")
    lo_ids = id_list(data, 'lo_ids', alias='lo_id')

    _, result = run_in_transaction(
        "update assessment criteria",
        lambda: propagation.update_assessment_criteria(
            db.session, ac_id, name=data.get('name'), max_marks=data.get('max_marks'), lo_ids=lo_ids))
    return mutation_response('Assessment criteria updated', result)


@assessment_bp.route('/assessment-criteria', methods=['DELETE'])
def delete_assessment_criteria():
    ac_id = int_arg('ac_id', aliases=('id',))
    result = run_in_transaction(
        "delete assessment criteria",
        lambda: propagation.delete_assessment_criteria(db.session, ac_id))
    logging.info(f"Deleted AC {ac_id}")
    return mutation_response('Assessment criteria deleted', result)


@assessment_bp.route('/assessment-criteria-score', methods=['GET'])
def get_assessment_scores():
    ac_id = int_arg('ac_id')
    ac = outcome_store.get_node(db.session, AssessmentCriteria, ac_id)
    rows = AcScore.query.filter_by(ac_id=ac_id).order_by(AcScore.student_record_id).all()
    names = reporting.student_names(db.session, [row.student_record_id for row in rows])
    return jsonify({
        'success': True,
        'ac_id': ac.id,
        'ac_name': ac.name,
        'max_marks': float(ac.max_marks),
        'scores': [{
            'student_id': row.student_record_id,
            'student_name': names.get(row.student_record_id),
            'obtained_marks': float(row.obtained_marks) if row.obtained_marks is not None else None,
            'value': row.value,
        } for row in rows],
    })


def _score_request():
    """Return ``(ac_id, scores)``; ac_id comes from the query string or the body"""
    data = json_body(expected=(dict, list))
    ac_id = int_arg('ac_id', required=False)
    if isinstance(data, list):
        scores = data
    else:
        scores = data.get('scores')
        if ac_id is None:
            ac_id = body_int(data, 'ac_id')
    if ac_id is None:
        raise ValidationError("ac_id is required in the query string or the request body")
    return ac_id, scores


@assessment_bp.route('/assessment-criteria-score', methods=['POST'])
def add_assessment_scores():
    """Insert or update scores for one AC and propagate them upward"""
    ac_id, scores = _score_request()
    result = run_in_transaction(
        "save assessment scores",
        lambda: propagation.record_ac_scores(db.session, ac_id, scores))
    logging.info(f"Saved {result.saved} score(s) for AC {ac_id}")
    return mutation_response('Scores saved', result)


@assessment_bp.route('/assessment-criteria-score', methods=['PUT'])
def update_assessment_scores():
    """Update existing scores for one AC; unknown rows are rejected"""
    ac_id, scores = _score_request()
    result = run_in_transaction(
        "update assessment scores",
        lambda: propagation.record_ac_scores(db.session, ac_id, scores, update_only=True))
    return mutation_response('Scores updated', result)
