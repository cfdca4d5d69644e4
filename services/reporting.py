"""Read-only rollups over the outcome and score tables"""

import logging
from collections import defaultdict

from sqlalchemy import or_

from models import (
    AssessmentCriteria, LearningOutcome, ReportOutcome,
    LoAcMapping, RoLoMapping, AcScore, LoScore, RoScore,
    Student, StudentRecord
)
from errors import NotFoundError
from services import outcome_store
from services.score_store import AC, LO, RO

TIER_MODELS = {
    AC: (AssessmentCriteria, AcScore, 'ac_id'),
    LO: (LearningOutcome, LoScore, 'lo_id'),
    RO: (ReportOutcome, RoScore, 'ro_id'),
}

# Score bands used across class reports
BAND_HIGH = 'above_0_67'
BAND_MID = 'between_0_35_0_67'
BAND_LOW = 'below_0_35'
BANDS = (BAND_HIGH, BAND_MID, BAND_LOW)

# Scope fields that decide which students belong to a class report
ENROLLMENT_FIELDS = ('year', 'class_name', 'section')


def score_band(value):
    if value > 0.67:
        return BAND_HIGH
    if value >= 0.35:
        return BAND_MID
    return BAND_LOW


def average(values):
    values = [value for value in values if value is not None]
    if not values:
        return None
    return sum(values) / len(values)


def _rounded(value, places=2):
    return None if value is None else round(value, places)


def student_names(session, record_ids):
    """Map enrollment record ids to student names"""
    if not record_ids:
        return {}
    rows = (session.query(StudentRecord.id, Student.name)
            .join(Student, Student.id == StudentRecord.student_id)
            .filter(StudentRecord.id.in_(list(record_ids))))
    return {row.id: row.name for row in rows}


def _scores_for_nodes(session, tier, node_ids, enrolled_in=None):
    """Return ``{node_id: [(student_record_id, value), ...]}``.

    ``enrolled_in`` is a scope; when given, only students enrolled in its
    year, class and section are counted.
    """
    _, score_model, node_field = TIER_MODELS[tier]
    result = defaultdict(list)
    if not node_ids:
        return result
    node_column = getattr(score_model, node_field)
    rows = session.query(score_model).filter(node_column.in_(list(node_ids)))
    if enrolled_in is not None:
        rows = rows.join(StudentRecord, StudentRecord.id == score_model.student_record_id)
        for field in ENROLLMENT_FIELDS:
            if enrolled_in.get(field) is not None:
                rows = rows.filter(getattr(StudentRecord, field) == enrolled_in[field])
    for row in rows.order_by(score_model.student_record_id):
        result[getattr(row, node_field)].append((row.student_record_id, row.value))
    return result


def node_to_dict(node):
    data = {'id': node.id, 'name': node.name}
    data.update(node.scope_dict())
    if isinstance(node, AssessmentCriteria):
        data['max_marks'] = float(node.max_marks)
    return data


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

def list_assessment_criteria(session, scope):
    """AC listing with linked LOs and the class average per AC"""
    acs = outcome_store.list_nodes(session, AssessmentCriteria, scope)
    ac_ids = [ac.id for ac in acs]
    scores = _scores_for_nodes(session, AC, ac_ids)

    links = defaultdict(list)
    if ac_ids:
        rows = (session.query(LoAcMapping, LearningOutcome.name)
                .join(LearningOutcome, LearningOutcome.id == LoAcMapping.lo_id)
                .filter(LoAcMapping.ac_id.in_(ac_ids))
                .order_by(LoAcMapping.lo_id))
        for edge, lo_name in rows:
            links[edge.ac_id].append({'lo_id': edge.lo_id, 'lo_name': lo_name,
                                      'priority': edge.priority, 'weight': edge.weight})

    result = []
    for ac in acs:
        data = node_to_dict(ac)
        data.update(ac_id=ac.id, ac_name=ac.name)
        data['learning_outcomes'] = links[ac.id]
        data['average_score'] = _rounded(average(value for _, value in scores[ac.id]), 4)
        result.append(data)
    return result


def list_learning_outcomes(session, scope):
    los = outcome_store.list_nodes(session, LearningOutcome, scope)
    lo_ids = [lo.id for lo in los]
    links = defaultdict(list)
    if lo_ids:
        rows = (session.query(RoLoMapping, ReportOutcome.name)
                .join(ReportOutcome, ReportOutcome.id == RoLoMapping.ro_id)
                .filter(RoLoMapping.lo_id.in_(lo_ids))
                .order_by(RoLoMapping.ro_id))
        for edge, ro_name in rows:
            links[edge.lo_id].append({'ro_id': edge.ro_id, 'ro_name': ro_name,
                                      'priority': edge.priority, 'weight': edge.weight})
    result = []
    for lo in los:
        data = node_to_dict(lo)
        data['report_outcomes'] = links[lo.id]
        result.append(data)
    return result


def list_report_outcomes(session, scope):
    ros = outcome_store.list_nodes(session, ReportOutcome, scope)
    result = []
    for ro in ros:
        data = node_to_dict(ro)
        data['learning_outcomes'] = [{'lo_id': edge.lo_id, 'priority': edge.priority, 'weight': edge.weight}
                                     for edge in outcome_store.ro_edges(session, ro.id)]
        result.append(data)
    return result


def learning_outcome_mapping(session, lo_id):
    """An LO's AC edges with priority and derived weight"""
    lo = outcome_store.get_node(session, LearningOutcome, lo_id)
    rows = (session.query(LoAcMapping, AssessmentCriteria.name)
            .join(AssessmentCriteria, AssessmentCriteria.id == LoAcMapping.ac_id)
            .filter(LoAcMapping.lo_id == lo_id)
            .order_by(LoAcMapping.ac_id))
    return {
        'lo_id': lo.id,
        'lo_name': lo.name,
        'mappings': [{'ac_id': edge.ac_id, 'ac_name': ac_name,
                      'priority': edge.priority, 'weight': edge.weight}
                     for edge, ac_name in rows],
    }


def report_outcome_mapping(session, ro_id):
    """An RO's LO edges with priority and derived weight"""
    ro = outcome_store.get_node(session, ReportOutcome, ro_id)
    rows = (session.query(RoLoMapping, LearningOutcome.name)
            .join(LearningOutcome, LearningOutcome.id == RoLoMapping.lo_id)
            .filter(RoLoMapping.ro_id == ro_id)
            .order_by(RoLoMapping.lo_id))
    return {
        'ro_id': ro.id,
        'ro_name': ro.name,
        'mappings': [{'lo_id': edge.lo_id, 'lo_name': lo_name,
                      'priority': edge.priority, 'weight': edge.weight}
                     for edge, lo_name in rows],
    }


# ---------------------------------------------------------------------------
# Class reports
# ---------------------------------------------------------------------------

def class_nodes(session, node_model, scope):
    """Nodes reported for a class; a node saved without a section serves every section"""
    query = outcome_store.filter_by_scope(session.query(node_model), node_model, dict(scope, section=None))
    if scope.get('section') is not None and hasattr(node_model, 'section'):
        query = query.filter(or_(node_model.section.is_(None), node_model.section == scope['section']))
    return query.order_by(node_model.id).all()


def class_overview(session, tier, scope):
    """Per-node class average, band counts and band rosters for one tier.

    Only students enrolled in the scope's year, class and section count.
    Students without a score on a node are left out of that node's average
    and bands rather than counted as zero.
    """
    node_model, _, node_field = TIER_MODELS[tier]
    nodes = class_nodes(session, node_model, scope)
    scores = _scores_for_nodes(session, tier, [node.id for node in nodes], enrolled_in=scope)
    names = student_names(session, {student_id for rows in scores.values() for student_id, _ in rows})

    overview = []
    for node in nodes:
        counts = {band: 0 for band in BANDS}
        rosters = {band: [] for band in BANDS}
        for student_id, value in scores[node.id]:
            band = score_band(value)
            counts[band] += 1
            rosters[band].append({'id': student_id, 'name': names.get(student_id)})
        overview.append({
            node_field: node.id,
            f'{tier}_name': node.name,
            'average_score': _rounded(average(value for _, value in scores[node.id]), 4),
            'student_counts': counts,
            'students': rosters,
        })
    logging.debug(f"Class overview for {tier.upper()} covered {len(nodes)} node(s)")
    return overview


def class_dashboard(session, scope):
    """Class average per tier across every node in the scope"""
    dashboard = {}
    for tier in (AC, LO, RO):
        node_model, score_model, node_field = TIER_MODELS[tier]
        node_ids = [node.id for node in class_nodes(session, node_model, scope)]
        values = []
        for rows in _scores_for_nodes(session, tier, node_ids, enrolled_in=scope).values():
            values.extend(value for _, value in rows)
        dashboard[tier] = {
            'count': len(node_ids),
            'class_average': _rounded(average(values), 4),
        }

    records = session.query(StudentRecord).filter(StudentRecord.active.is_(True))
    for field in ENROLLMENT_FIELDS:
        if scope.get(field) is not None:
            records = records.filter(getattr(StudentRecord, field) == scope[field])
    dashboard['student_count'] = records.count()
    return dashboard


def mapping_tree(session, subject, year):
    """RO -> LO -> AC tree for a subject and year"""
    scope = {'subject': subject, 'year': year}
    tree = []
    for ro in outcome_store.list_nodes(session, ReportOutcome, scope):
        los = []
        rows = (session.query(RoLoMapping, LearningOutcome)
                .join(LearningOutcome, LearningOutcome.id == RoLoMapping.lo_id)
                .filter(RoLoMapping.ro_id == ro.id)
                .order_by(RoLoMapping.lo_id))
        for ro_edge, lo in rows:
            acs = (session.query(LoAcMapping, AssessmentCriteria)
                   .join(AssessmentCriteria, AssessmentCriteria.id == LoAcMapping.ac_id)
                   .filter(LoAcMapping.lo_id == lo.id)
                   .order_by(LoAcMapping.ac_id))
            los.append({
                'lo_id': lo.id,
                'lo_name': lo.name,
                'priority': ro_edge.priority,
                'weight': ro_edge.weight,
                'assessment_criteria': [{'ac_id': ac.id, 'ac_name': ac.name,
                                         'max_marks': float(ac.max_marks),
                                         'priority': edge.priority, 'weight': edge.weight}
                                        for edge, ac in acs],
            })
        tree.append({'ro_id': ro.id, 'ro_name': ro.name, 'learning_outcomes': los})
    return tree


# ---------------------------------------------------------------------------
# Student reports
# ---------------------------------------------------------------------------

def _student_tier_scores(session, tier, scope, student_id):
    node_model, score_model, node_field = TIER_MODELS[tier]
    node_column = getattr(score_model, node_field)
    query = (session.query(score_model, node_model)
             .join(node_model, node_model.id == node_column)
             .filter(score_model.student_record_id == student_id))
    query = outcome_store.filter_by_scope(query, node_model, scope)
    return [{node_field: node.id, f'{tier}_name': node.name, 'value': score.value}
            for score, node in query.order_by(node_model.id)]


def student_outcome_scores(session, tier, scope, student_id):
    """One student's LO or RO scores in scope plus their average"""
    if session.get(StudentRecord, student_id) is None:
        raise NotFoundError('Student', student_id)
    scores = _student_tier_scores(session, tier, scope, student_id)
    return {
        'student_id': student_id,
        'scores': scores,
        'average': _rounded(average(entry['value'] for entry in scores)),
    }


def class_outcome_scores(session, tier, scope):
    """Every stored LO or RO score in scope, grouped by student"""
    node_model, _, node_field = TIER_MODELS[tier]
    nodes = {node.id: node for node in class_nodes(session, node_model, scope)}
    by_student = defaultdict(list)
    for node_id, rows in _scores_for_nodes(session, tier, list(nodes), enrolled_in=scope).items():
        for student_id, value in rows:
            by_student[student_id].append({node_field: node_id, f'{tier}_name': nodes[node_id].name,
                                           'value': value})
    names = student_names(session, by_student.keys())
    return [{
        'student_id': student_id,
        'student_name': names.get(student_id),
        'scores': sorted(entries, key=lambda entry: entry[node_field]),
        'average': _rounded(average(entry['value'] for entry in entries)),
    } for student_id, entries in sorted(by_student.items())]


def student_report(session, scope, student_id):
    """All three tiers for one student with per-tier averages"""
    record = session.get(StudentRecord, student_id)
    if record is None:
        raise NotFoundError('Student', student_id)

    ac_scores = _student_tier_scores(session, AC, scope, student_id)
    lo_scores = _student_tier_scores(session, LO, scope, student_id)
    ro_scores = _student_tier_scores(session, RO, scope, student_id)
    return {
        'student_id': record.id,
        'student_name': record.student.name,
        'class_name': record.class_name,
        'section': record.section,
        'ac_scores': ac_scores,
        'lo_scores': lo_scores,
        'ro_scores': ro_scores,
        'avg_ac': _rounded(average(entry['value'] for entry in ac_scores)),
        'avg_lo': _rounded(average(entry['value'] for entry in lo_scores)),
        'avg_ro': _rounded(average(entry['value'] for entry in ro_scores)),
    }
