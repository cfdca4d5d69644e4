from flask import Blueprint, jsonify
from models import db
from routes.utility_routes import scope_from_headers, int_arg
from services import reporting
from services.score_store import AC, LO, RO

report_bp = Blueprint('report', __name__)

CLASS_HEADERS = ('subject', 'classname', 'year')


def _class_overview(tier):
    scope = scope_from_headers(required=CLASS_HEADERS)
    return jsonify({
        'success': True,
        f'class_{tier}_averages': reporting.class_overview(db.session, tier, scope),
    })


@report_bp.route('/class-overview-ac-avg', methods=['GET'])
def class_overview_ac():
    return _class_overview(AC)


@report_bp.route('/class-overview-lo-avg', methods=['GET'])
def class_overview_lo():
    return _class_overview(LO)


@report_bp.route('/class-overview-ro-avg', methods=['GET'])
def class_overview_ro():
    return _class_overview(RO)


@report_bp.route('/student-report', methods=['GET'])
def student_report():
    """AC, LO and RO scores of one student with per-tier averages"""
    scope = scope_from_headers(required=('subject', 'year'))
    student_id = int_arg('student_id')
    return jsonify({'success': True, **reporting.student_report(db.session, scope, student_id)})


@report_bp.route('/mapping-tree', methods=['GET'])
def mapping_tree():
    scope = scope_from_headers(required=('subject', 'year'))
    return jsonify({'success': True,
                    'report_outcomes': reporting.mapping_tree(db.session, scope['subject'], scope['year'])})


@report_bp.route('/class-dashboard', methods=['GET'])
def class_dashboard():
    """Class average per tier for a class, section and term"""
    scope = scope_from_headers(required=CLASS_HEADERS)
    return jsonify({'success': True, 'scope': scope, **reporting.class_dashboard(db.session, scope)})
