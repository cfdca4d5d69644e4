from flask import Blueprint, jsonify
from models import db, LearningOutcome, ReportOutcome
from routes.utility_routes import (
    scope_from_headers, int_arg, json_body, id_list, run_in_transaction, mutation_response
)
from services import outcome_store, propagation, reporting
from services.score_store import LO, RO
from errors import ValidationError
import logging

outcome_bp = Blueprint('outcome', __name__)

LO_REQUIRED_HEADERS = ('subject', 'classname', 'year', 'quarter')
RO_REQUIRED_HEADERS = ('subject', 'classname', 'year')


def _mapping_entries():
    """PUT body is the array itself, {"data": [...]} or {"mappings": [...]}"""
    data = json_body(expected=(dict, list))
    if isinstance(data, dict):
        data = data['data'] if 'data' in data else data.get('mappings')
    return data


def _priority_change(source_key):
    data = json_body()
    if data.get(source_key) is None or 'priority' not in data:
        raise ValidationError(f"{source_key} and priority are required")
    try:
        source_id = int(data[source_key])
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {source_key} '{data[source_key]}'")
    return source_id, data['priority']


# ---------------------------------------------------------------------------
# Learning outcomes
# ---------------------------------------------------------------------------

@outcome_bp.route('/learning-outcome', methods=['GET'])
def get_learning_outcomes():
    lo_id = int_arg('lo_id', required=False)
    if lo_id is not None:
        lo = outcome_store.get_node(db.session, LearningOutcome, lo_id)
        return jsonify({'success': True, 'learning_outcome': reporting.node_to_dict(lo)})
    scope = scope_from_headers(required=('subject', 'year'))
    return jsonify({'success': True,
                    'learning_outcomes': reporting.list_learning_outcomes(db.session, scope)})


@outcome_bp.route('/learning-outcome', methods=['POST'])
def add_learning_outcome():
    scope = scope_from_headers(required=LO_REQUIRED_HEADERS)
    data = json_body()
    ro_ids = id_list(data, 'ro_ids', alias='ro_id') or []
    lo = run_in_transaction(
        "add learning outcome",
        lambda: outcome_store.create_learning_outcome(db.session, scope, data.get('name'), ro_ids))
    logging.info(f"Added LO {lo.id} ({lo.name}) linked to ROs {ro_ids}")
    return mutation_response('Learning outcome added', status=201, insertedId=lo.id)


@outcome_bp.route('/learning-outcome', methods=['PUT'])
def update_learning_outcome():
    lo_id = int_arg('lo_id')
    data = json_body()
    if not any(key in data for key in ('name', 'ro_ids', 'ro_id')):
        raise ValidationError("Nothing to update. Provide name or ro_ids.")
    ro_ids = id_list(data, 'ro_ids', alias='ro_id')
    _, result = run_in_transaction(
        "update learning outcome",
        lambda: propagation.update_learning_outcome(db.session, lo_id, name=data.get('name'), ro_ids=ro_ids))
    return mutation_response('Learning outcome updated', result)


@outcome_bp.route('/learning-outcome', methods=['DELETE'])
def delete_learning_outcome():
    lo_id = int_arg('lo_id')
    result = run_in_transaction(
        "delete learning outcome",
        lambda: propagation.delete_learning_outcome(db.session, lo_id))
    logging.info(f"Deleted LO {lo_id}")
    return mutation_response('Learning outcome deleted', result)


@outcome_bp.route('/learning-outcome-mapping', methods=['GET'])
def get_learning_outcome_mapping():
    lo_id = int_arg('lo_id')
    return jsonify({'success': True, **reporting.learning_outcome_mapping(db.session, lo_id)})


@outcome_bp.route('/learning-outcome-mapping', methods=['PUT'])
def replace_learning_outcome_mapping():
    """Replace every AC edge of an LO and recalculate the LO and its ROs"""
    lo_id = int_arg('lo_id')
    entries = _mapping_entries()
    result = run_in_transaction(
        "update learning outcome mapping",
        lambda: propagation.replace_learning_outcome_mapping(db.session, lo_id, entries))
    return mutation_response('Learning outcome mapping updated', result)


@outcome_bp.route('/learning-outcome-mapping', methods=['PATCH'])
def update_learning_outcome_priority():
    lo_id = int_arg('lo_id')
    ac_id, priority = _priority_change('ac_id')
    result = run_in_transaction(
        "update learning outcome priority",
        lambda: propagation.set_learning_outcome_priority(db.session, lo_id, ac_id, priority))
    return mutation_response('Priority updated', result)


@outcome_bp.route('/learning-outcome-score', methods=['GET'])
def get_learning_outcome_scores():
    """Per-student LO scores; one student when student_id is given"""
    scope = scope_from_headers(required=('subject', 'year'))
    student_id = int_arg('student_id', required=False)
    if student_id is not None:
        return jsonify({'success': True,
                        **reporting.student_outcome_scores(db.session, LO, scope, student_id)})
    return jsonify({'success': True, 'students': reporting.class_outcome_scores(db.session, LO, scope)})


# ---------------------------------------------------------------------------
# Report outcomes
# ---------------------------------------------------------------------------

@outcome_bp.route('/report-outcome', methods=['GET'])
def get_report_outcomes():
    ro_id = int_arg('ro_id', required=False)
    if ro_id is not None:
        ro = outcome_store.get_node(db.session, ReportOutcome, ro_id)
        return jsonify({'success': True, 'report_outcome': reporting.node_to_dict(ro)})
    scope = scope_from_headers(required=('subject', 'year'))
    return jsonify({'success': True,
                    'report_outcomes': reporting.list_report_outcomes(db.session, scope)})


@outcome_bp.route('/report-outcome', methods=['POST'])
def add_report_outcome():
    scope = scope_from_headers(required=RO_REQUIRED_HEADERS)
    data = json_body()
    lo_ids = id_list(data, 'lo_ids', alias='lo_id') or []
    ro = run_in_transaction(
        "add report outcome",
        lambda: outcome_store.create_report_outcome(db.session, scope, data.get('name'), lo_ids))
    logging.info(f"Added RO {ro.id} ({ro.name}) linked to LOs {lo_ids}")
    return mutation_response('Report outcome added', status=201, insertedId=ro.id)


@outcome_bp.route('/report-outcome', methods=['PUT'])
def update_report_outcome():
    ro_id = int_arg('ro_id')
    data = json_body()
    if not any(key in data for key in ('name', 'lo_ids', 'lo_id')):
        raise ValidationError("Nothing to update. Provide name or lo_ids.")
    lo_ids = id_list(data, 'lo_ids', alias='lo_id')
    _, result = run_in_transaction(
        "update report outcome",
        lambda: propagation.update_report_outcome(db.session, ro_id, name=data.get('name'), lo_ids=lo_ids))
    return mutation_response('Report outcome updated', result)


@outcome_bp.route('/report-outcome', methods=['DELETE'])
def delete_report_outcome():
    ro_id = int_arg('ro_id')
    result = run_in_transaction(
        "delete report outcome",
        lambda: propagation.delete_report_outcome(db.session, ro_id))
    logging.info(f"Deleted RO {ro_id}")
    return mutation_response('Report outcome deleted', result)


@outcome_bp.route('/report-outcome-mapping', methods=['GET'])
def get_report_outcome_mapping():
    ro_id = int_arg('ro_id')
    return jsonify({'success': True, **reporting.report_outcome_mapping(db.session, ro_id)})


@outcome_bp.route('/report-outcome-mapping', methods=['PUT'])
def replace_report_outcome_mapping():
    """Replace every LO edge of an RO and recalculate the RO"""
    ro_id = int_arg('ro_id')
    entries = _mapping_entries()
    result = run_in_transaction(
        "update report outcome mapping",
        lambda: propagation.replace_report_outcome_mapping(db.session, ro_id, entries))
    return mutation_response('Report outcome mapping updated', result)


@outcome_bp.route('/report-outcome-mapping', methods=['PATCH'])
def update_report_outcome_priority():
    ro_id = int_arg('ro_id')
    lo_id, priority = _priority_change('lo_id')
    result = run_in_transaction(
        "update report outcome priority",
        lambda: propagation.set_report_outcome_priority(db.session, ro_id, lo_id, priority))
    return mutation_response('Priority updated', result)


@outcome_bp.route('/report-outcome-score', methods=['GET'])
def get_report_outcome_scores():
    scope = scope_from_headers(required=('subject', 'year'))
    student_id = int_arg('student_id', required=False)
    if student_id is not None:
        return jsonify({'success': True,
                        **reporting.student_outcome_scores(db.session, RO, scope, student_id)})
    return jsonify({'success': True, 'students': reporting.class_outcome_scores(db.session, RO, scope)})
