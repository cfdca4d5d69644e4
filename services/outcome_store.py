"""Persistence of outcome nodes (AC/LO/RO) and their mapping edges.

Every function takes the caller's session and never commits; the request
that triggered the change owns the transaction.
"""

import logging
from decimal import Decimal, InvalidOperation

from errors import NotFoundError, ValidationError
from models import (
    AssessmentCriteria, LearningOutcome, ReportOutcome,
    LoAcMapping, RoLoMapping, Log
)
from services.weights import Priority

NODE_KINDS = {
    AssessmentCriteria: 'Assessment criteria',
    LearningOutcome: 'Learning outcome',
    ReportOutcome: 'Report outcome',
}

SCOPE_FIELDS = ('subject', 'year', 'quarter', 'class_name', 'section')


def get_node(session, model, node_id):
    """Fetch a node by id or raise NotFoundError"""
    node = session.get(model, node_id)
    if node is None:
        raise NotFoundError(NODE_KINDS[model], node_id)
    return node


def filter_by_scope(query, model, scope):
    """Apply every non-empty scope field that the model carries"""
    for field in SCOPE_FIELDS:
        value = scope.get(field)
        if value is not None and hasattr(model, field):
            query = query.filter(getattr(model, field) == value)
    return query


def list_nodes(session, model, scope):
    query = filter_by_scope(session.query(model), model, scope)
    return query.order_by(model.id).all()


def parse_max_marks(raw):
    try:
        max_marks = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid max_marks '{raw}'")
    if not max_marks.is_finite() or max_marks <= 0:
        raise ValidationError('max_marks must be a positive number')
    return max_marks.quantize(Decimal('0.01'))


def _require_name(name):
    if not name or not str(name).strip():
        raise ValidationError('name is required')
    return str(name).strip()


def _require_existing(session, model, ids):
    """Return ids de-duplicated in input order after checking they all exist"""
    unique_ids = list(dict.fromkeys(ids))
    if not unique_ids:
        return unique_ids
    found = {row.id for row in session.query(model.id).filter(model.id.in_(unique_ids))}
    missing = [node_id for node_id in unique_ids if node_id not in found]
    if missing:
        raise NotFoundError(NODE_KINDS[model], missing[0] if len(missing) == 1 else missing)
    return unique_ids


def _log(session, action, description):
    session.add(Log(action=action, description=description))


# ---------------------------------------------------------------------------
# Node creation / update
# ---------------------------------------------------------------------------

def create_assessment_criteria(session, scope, name, max_marks, lo_ids):
    """Create an AC and link it to LOs with unset priority"""
    name = _require_name(name)
    max_marks = parse_max_marks(max_marks)
    lo_ids = _require_existing(session, LearningOutcome, lo_ids)

    ac = AssessmentCriteria(name=name, max_marks=max_marks,
                            **{field: scope.get(field) for field in SCOPE_FIELDS})
    session.add(ac)
    session.flush()

    for lo_id in lo_ids:
        session.add(LoAcMapping(lo_id=lo_id, ac_id=ac.id, priority=None, weight=None))

    _log(session, "ADD_ASSESSMENT_CRITERIA",
         f"Added assessment criteria {ac.name} ({ac.id}) mapped to LOs {lo_ids}")
    logging.debug(f"Created AC {ac.id} with {len(lo_ids)} LO mappings")
    return ac


def create_learning_outcome(session, scope, name, ro_ids):
    """Create an LO and link it to ROs with unset priority"""
    name = _require_name(name)
    ro_ids = _require_existing(session, ReportOutcome, ro_ids)

    lo = LearningOutcome(name=name, **{field: scope.get(field) for field in SCOPE_FIELDS})
    session.add(lo)
    session.flush()

    for ro_id in ro_ids:
        session.add(RoLoMapping(ro_id=ro_id, lo_id=lo.id, priority=None, weight=None))

    _log(session, "ADD_LEARNING_OUTCOME",
         f"Added learning outcome {lo.name} ({lo.id}) mapped to ROs {ro_ids}")
    return lo


def create_report_outcome(session, scope, name, lo_ids=None):
    """Create an RO, optionally linking LOs with unset priority"""
    name = _require_name(name)
    lo_ids = _require_existing(session, LearningOutcome, lo_ids or [])

    ro = ReportOutcome(name=name, **{field: scope.get(field) for field in SCOPE_FIELDS})
    session.add(ro)
    session.flush()

    for lo_id in lo_ids:
        session.add(RoLoMapping(ro_id=ro.id, lo_id=lo_id, priority=None, weight=None))

    _log(session, "ADD_REPORT_OUTCOME",
         f"Added report outcome {ro.name} ({ro.id}) mapped to LOs {lo_ids}")
    return ro


def rename_node(session, node, name):
    name = _require_name(name)
    changed = node.name != name
    node.name = name
    return changed


# ---------------------------------------------------------------------------
# Edge reads
# ---------------------------------------------------------------------------

def lo_edges(session, lo_id):
    """All AC -> LO edges of one LO"""
    return (session.query(LoAcMapping)
            .filter(LoAcMapping.lo_id == lo_id)
            .order_by(LoAcMapping.ac_id)
            .all())


def ro_edges(session, ro_id):
    """All LO -> RO edges of one RO"""
    return (session.query(RoLoMapping)
            .filter(RoLoMapping.ro_id == ro_id)
            .order_by(RoLoMapping.lo_id)
            .all())


def lo_ids_for_ac(session, ac_id, prioritized_only=False):
    query = session.query(LoAcMapping.lo_id).filter(LoAcMapping.ac_id == ac_id)
    if prioritized_only:
        query = query.filter(LoAcMapping.priority.isnot(None))
    return sorted({row.lo_id for row in query})


def ro_ids_for_los(session, lo_ids):
    if not lo_ids:
        return []
    rows = session.query(RoLoMapping.ro_id).filter(RoLoMapping.lo_id.in_(list(lo_ids)))
    return sorted({row.ro_id for row in rows})


# ---------------------------------------------------------------------------
# Edge-set replacement
# ---------------------------------------------------------------------------

def _parse_mapping_entries(entries, source_key):
    """Validate ``[{<source_key>: id, priority: tag}]`` into (id, Priority) pairs"""
    if not isinstance(entries, list) or not entries:
        raise ValidationError(f"Invalid data format. Expected a non-empty array of objects with {source_key} and priority.")
    parsed = {}
    for item in entries:
        if not isinstance(item, dict) or item.get(source_key) is None:
            raise ValidationError(f"Every mapping entry needs {source_key}")
        try:
            source_id = int(item[source_key])
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {source_key} '{item[source_key]}'")
        if source_id in parsed:
            raise ValidationError(f"Duplicate {source_key} {source_id} in mapping")
        parsed[source_id] = Priority.parse(item.get('priority'))
    return parsed


def replace_lo_edges(session, lo_id, entries):
    """Replace an LO's whole AC edge set (delete all, then insert all).

    Returns the set of AC ids that were mapped before the replacement.
    """
    get_node(session, LearningOutcome, lo_id)
    parsed = _parse_mapping_entries(entries, 'ac_id')
    _require_existing(session, AssessmentCriteria, list(parsed))

    previous = {edge.ac_id for edge in lo_edges(session, lo_id)}
    session.query(LoAcMapping).filter(LoAcMapping.lo_id == lo_id).delete(synchronize_session='fetch')
    session.flush()
    for ac_id, priority in parsed.items():
        session.add(LoAcMapping(lo_id=lo_id, ac_id=ac_id, priority=priority.tag, weight=None))
    session.flush()

    _log(session, "UPDATE_LO_MAPPING",
         f"Replaced AC mapping of learning outcome {lo_id}: "
         + ", ".join(f"{ac_id}:{priority.tag or '-'}" for ac_id, priority in parsed.items()))
    return previous


def replace_ro_edges(session, ro_id, entries):
    """Replace an RO's whole LO edge set. Returns previously mapped LO ids."""
    get_node(session, ReportOutcome, ro_id)
    parsed = _parse_mapping_entries(entries, 'lo_id')
    _require_existing(session, LearningOutcome, list(parsed))

    previous = {edge.lo_id for edge in ro_edges(session, ro_id)}
    session.query(RoLoMapping).filter(RoLoMapping.ro_id == ro_id).delete(synchronize_session='fetch')
    session.flush()
    for lo_id, priority in parsed.items():
        session.add(RoLoMapping(ro_id=ro_id, lo_id=lo_id, priority=priority.tag, weight=None))
    session.flush()

    _log(session, "UPDATE_RO_MAPPING",
         f"Replaced LO mapping of report outcome {ro_id}: "
         + ", ".join(f"{lo_id}:{priority.tag or '-'}" for lo_id, priority in parsed.items()))
    return previous


def set_edge_priority(session, edge_model, target_id, source_id, priority):
    """Change the priority of a single existing edge. Returns True when it changed."""
    if edge_model is LoAcMapping:
        edge = (session.query(LoAcMapping)
                .filter_by(lo_id=target_id, ac_id=source_id).one_or_none())
        label = f"AC {source_id} -> LO {target_id}"
    else:
        edge = (session.query(RoLoMapping)
                .filter_by(ro_id=target_id, lo_id=source_id).one_or_none())
        label = f"LO {source_id} -> RO {target_id}"
    if edge is None:
        raise NotFoundError('Mapping', label)

    priority = Priority.parse(priority)
    if edge.priority == priority.tag:
        return False
    edge.priority = priority.tag
    _log(session, "UPDATE_PRIORITY", f"Set priority of {label} to {priority.tag or 'unset'}")
    return True


def _sync_links(session, edge_model, fixed_column, fixed_id, linked_column, wanted_ids):
    """Make the edges hanging off one node match ``wanted_ids``.

    Surviving edges keep their priority; new edges start unset. Returns
    (added_ids, removed_ids).
    """
    existing = (session.query(edge_model)
                .filter(getattr(edge_model, fixed_column) == fixed_id)
                .all())
    current = {getattr(edge, linked_column): edge for edge in existing}
    wanted = set(wanted_ids)

    removed = set(current) - wanted
    added = [linked_id for linked_id in wanted_ids if linked_id not in current]

    for linked_id in removed:
        session.delete(current[linked_id])
    for linked_id in added:
        session.add(edge_model(**{fixed_column: fixed_id, linked_column: linked_id,
                                  'priority': None, 'weight': None}))
    session.flush()
    return set(added), removed


def sync_ac_learning_outcomes(session, ac_id, lo_ids):
    lo_ids = _require_existing(session, LearningOutcome, lo_ids)
    return _sync_links(session, LoAcMapping, 'ac_id', ac_id, 'lo_id', lo_ids)


def sync_lo_report_outcomes(session, lo_id, ro_ids):
    ro_ids = _require_existing(session, ReportOutcome, ro_ids)
    return _sync_links(session, RoLoMapping, 'lo_id', lo_id, 'ro_id', ro_ids)


def sync_ro_learning_outcomes(session, ro_id, lo_ids):
    lo_ids = _require_existing(session, LearningOutcome, lo_ids)
    return _sync_links(session, RoLoMapping, 'ro_id', ro_id, 'lo_id', lo_ids)


# ---------------------------------------------------------------------------
# Deletion helpers
# ---------------------------------------------------------------------------

def delete_edges(session, edge_model, column, node_id):
    """Bulk delete every edge of ``edge_model`` touching ``node_id`` through ``column``"""
    return (session.query(edge_model)
            .filter(getattr(edge_model, column) == node_id)
            .delete(synchronize_session='fetch'))


def delete_node(session, node, action):
    description = f"Deleted {NODE_KINDS[type(node)].lower()} {node.name} ({node.id})"
    # Children were bulk-deleted already; drop any collections loaded before that
    session.expire(node)
    session.delete(node)
    session.flush()
    _log(session, action, description)
