"""
Weighted score propagation AC -> LO -> RO.

Triggers and what they recompute:

1. AC scores written          -> LOs reached through a prioritized edge, for the
                                 affected students, then their ROs.
2. An LO's AC edge set changes -> that LO's weights and scores for every student
                                 with an AC score among its ACs, then its ROs.
3. An RO's LO edge set changes -> that RO's weights and scores.
4. A node is deleted           -> its scores and edges go first, then trigger 2/3
                                 runs for every neighbour that referenced it.

A target score is ``sum(weight_i * score_i)`` over prioritized sources that
have a score for the student. Missing sources contribute nothing and the
weights are not re-normalized over the sources that are present. A target
with no prioritized sources, or a student with no score on any of them, has
no score row at all.

Nothing here commits. Skip conditions are reported as warning strings; any
database error propagates so the caller can roll the request back.
"""

import logging

from models import AssessmentCriteria, LearningOutcome, ReportOutcome, LoAcMapping, RoLoMapping, Log
from services import outcome_store, score_store
from services.score_store import AC, LO, RO
from services.weights import normalize, weighted_sum


class PropagationResult:
    """Accumulates what a trigger recalculated and any skip warnings"""

    def __init__(self):
        self.learning_outcomes = set()
        self.report_outcomes = set()
        self.warnings = []
        self.saved = None

    def to_dict(self):
        data = {
            'recalculated': {
                'learning_outcomes': sorted(self.learning_outcomes),
                'report_outcomes': sorted(self.report_outcomes),
            },
            'warnings': list(self.warnings),
        }
        if self.saved is not None:
            data['saved'] = self.saved
        return data


def _apply_weights(edges, weights):
    for edge in edges:
        edge.weight = weights.get(edge.source_id)


def _recalculate_target(session, tier, source_tier, target_id, edges, student_ids):
    """Shared LO/RO recompute: refresh edge weights, then rewrite target scores"""
    warnings = []
    weights = normalize(edges)
    _apply_weights(edges, weights)
    label = f"{tier.upper()} {target_id}"

    if not weights:
        cleared = score_store.delete_scores(session, tier, target_id, student_ids)
        if edges:
            warnings.append(f"{label} has no prioritized {source_tier.upper()} mappings; "
                            f"skipped scoring and cleared {cleared} score(s)")
        else:
            warnings.append(f"{label} has no mapped {source_tier.upper()}s; "
                            f"skipped scoring and cleared {cleared} score(s)")
        return warnings

    source_scores = score_store.scores_by_student(session, source_tier, list(weights), student_ids)
    new_values = {}
    for student_id, scores in source_scores.items():
        value = weighted_sum(weights, scores)
        if value is not None:
            new_values[student_id] = value

    score_store.upsert_derived_scores(session, tier, target_id, new_values)
    # Students who had a score but no longer have any basis for one
    stale = score_store.delete_scores(session, tier, target_id, student_ids, keep=new_values.keys())

    if not new_values:
        warnings.append(f"{label} has no {source_tier.upper()} scores yet; nothing to compute")
    logging.info(f"Recalculated {label} for {len(new_values)} student(s), removed {stale} stale score(s)")
    return warnings


def recalculate_learning_outcome(session, lo_id, student_ids=None):
    """Renormalize an LO's AC weights and rewrite its scores.

    ``student_ids`` limits the rewrite to those students; None means every
    student with a score on one of the LO's ACs. Returns warning strings.
    """
    edges = outcome_store.lo_edges(session, lo_id)
    return _recalculate_target(session, LO, AC, lo_id, edges, student_ids)


def recalculate_report_outcome(session, ro_id, student_ids=None):
    """Renormalize an RO's LO weights and rewrite its scores. Returns warning strings."""
    edges = outcome_store.ro_edges(session, ro_id)
    return _recalculate_target(session, RO, LO, ro_id, edges, student_ids)


def _recalculate_los_then_ros(session, lo_ids, result, student_ids=None):
    """Recompute each LO once, then each RO reached from them once"""
    for lo_id in sorted(set(lo_ids)):
        result.warnings.extend(recalculate_learning_outcome(session, lo_id, student_ids))
        result.learning_outcomes.add(lo_id)

    ro_ids = outcome_store.ro_ids_for_los(session, lo_ids)
    for ro_id in sorted(ro_ids):
        result.warnings.extend(recalculate_report_outcome(session, ro_id, student_ids))
        result.report_outcomes.add(ro_id)
    return result


# ---------------------------------------------------------------------------
# Trigger 1: AC scores written
# ---------------------------------------------------------------------------

def record_ac_scores(session, ac_id, scores, update_only=False):
    """Normalize and store raw marks for one AC, then propagate to LOs and ROs"""
    ac = outcome_store.get_node(session, AssessmentCriteria, ac_id)
    entries = score_store.parse_score_entries(scores, ac.max_marks)
    if update_only:
        student_ids = score_store.update_ac_scores(session, ac, entries)
    else:
        student_ids = score_store.upsert_ac_scores(session, ac, entries)

    result = propagate_ac_scores(session, ac_id, student_ids)
    result.saved = len(student_ids)
    return result


def propagate_ac_scores(session, ac_id, student_ids):
    result = PropagationResult()
    lo_ids = outcome_store.lo_ids_for_ac(session, ac_id, prioritized_only=True)
    if not lo_ids:
        result.warnings.append(f"AC {ac_id} is not mapped to any learning outcome with a priority; "
                               f"nothing to propagate")
        return result
    return _recalculate_los_then_ros(session, lo_ids, result, student_ids)


# ---------------------------------------------------------------------------
# Trigger 2: an LO's AC edge set changed
# ---------------------------------------------------------------------------

def replace_learning_outcome_mapping(session, lo_id, entries):
    previous = outcome_store.replace_lo_edges(session, lo_id, entries)
    result = PropagationResult()
    logging.info(f"LO {lo_id} mapping replaced (previously {sorted(previous)})")
    return _recalculate_los_then_ros(session, [lo_id], result)


def set_learning_outcome_priority(session, lo_id, ac_id, priority):
    result = PropagationResult()
    if not outcome_store.set_edge_priority(session, LoAcMapping, lo_id, ac_id, priority):
        result.warnings.append(f"Priority of AC {ac_id} -> LO {lo_id} unchanged; nothing recalculated")
        return result
    return _recalculate_los_then_ros(session, [lo_id], result)


def update_assessment_criteria(session, ac_id, name=None, max_marks=None, lo_ids=None):
    """Rename/rescale an AC and/or change its LO list.

    A ``max_marks`` change rescales stored values and recomputes every LO the
    AC feeds; an LO list change recomputes the LOs gained and lost.
    """
    ac = outcome_store.get_node(session, AssessmentCriteria, ac_id)
    result = PropagationResult()
    affected_los = set()

    if name is not None:
        outcome_store.rename_node(session, ac, name)

    if lo_ids is not None:
        added, removed = outcome_store.sync_ac_learning_outcomes(session, ac_id, lo_ids)
        affected_los |= added | removed

    if max_marks is not None:
        new_max = outcome_store.parse_max_marks(max_marks)
        if new_max != ac.max_marks:
            score_store.rescale_ac_scores(session, ac, ac.max_marks, new_max)
            ac.max_marks = new_max
            affected_los |= set(outcome_store.lo_ids_for_ac(session, ac_id))

    session.add(Log(action="EDIT_ASSESSMENT_CRITERIA",
                    description=f"Edited assessment criteria {ac.name} ({ac.id})"))
    if affected_los:
        _recalculate_los_then_ros(session, affected_los, result)
    return ac, result


# ---------------------------------------------------------------------------
# Trigger 3: an RO's LO edge set changed
# ---------------------------------------------------------------------------

def replace_report_outcome_mapping(session, ro_id, entries):
    previous = outcome_store.replace_ro_edges(session, ro_id, entries)
    result = PropagationResult()
    logging.info(f"RO {ro_id} mapping replaced (previously {sorted(previous)})")
    result.warnings.extend(recalculate_report_outcome(session, ro_id))
    result.report_outcomes.add(ro_id)
    return result


def set_report_outcome_priority(session, ro_id, lo_id, priority):
    result = PropagationResult()
    if not outcome_store.set_edge_priority(session, RoLoMapping, ro_id, lo_id, priority):
        result.warnings.append(f"Priority of LO {lo_id} -> RO {ro_id} unchanged; nothing recalculated")
        return result
    result.warnings.extend(recalculate_report_outcome(session, ro_id))
    result.report_outcomes.add(ro_id)
    return result


def _recalculate_ros(session, ro_ids, result):
    for ro_id in sorted(set(ro_ids)):
        result.warnings.extend(recalculate_report_outcome(session, ro_id))
        result.report_outcomes.add(ro_id)
    return result


def update_learning_outcome(session, lo_id, name=None, ro_ids=None):
    """Rename an LO and/or change the ROs it feeds"""
    lo = outcome_store.get_node(session, LearningOutcome, lo_id)
    result = PropagationResult()
    if name is not None:
        outcome_store.rename_node(session, lo, name)
    if ro_ids is not None:
        added, removed = outcome_store.sync_lo_report_outcomes(session, lo_id, ro_ids)
        _recalculate_ros(session, added | removed, result)
    session.add(Log(action="EDIT_LEARNING_OUTCOME",
                    description=f"Edited learning outcome {lo.name} ({lo.id})"))
    return lo, result


def update_report_outcome(session, ro_id, name=None, lo_ids=None):
    """Rename an RO and/or change the LOs it is built from"""
    ro = outcome_store.get_node(session, ReportOutcome, ro_id)
    result = PropagationResult()
    if name is not None:
        outcome_store.rename_node(session, ro, name)
    if lo_ids is not None:
        added, removed = outcome_store.sync_ro_learning_outcomes(session, ro_id, lo_ids)
        if added or removed:
            _recalculate_ros(session, [ro_id], result)
    session.add(Log(action="EDIT_REPORT_OUTCOME",
                    description=f"Edited report outcome {ro.name} ({ro.id})"))
    return ro, result


# ---------------------------------------------------------------------------
# Trigger 4: node deletion
# ---------------------------------------------------------------------------

def delete_assessment_criteria(session, ac_id):
    ac = outcome_store.get_node(session, AssessmentCriteria, ac_id)
    lo_ids = outcome_store.lo_ids_for_ac(session, ac_id)

    score_store.delete_scores(session, AC, ac_id)
    outcome_store.delete_edges(session, LoAcMapping, 'ac_id', ac_id)
    outcome_store.delete_node(session, ac, "DELETE_ASSESSMENT_CRITERIA")

    result = PropagationResult()
    return _recalculate_los_then_ros(session, lo_ids, result)


def delete_learning_outcome(session, lo_id):
    lo = outcome_store.get_node(session, LearningOutcome, lo_id)
    ro_ids = outcome_store.ro_ids_for_los(session, [lo_id])

    score_store.delete_scores(session, LO, lo_id)
    outcome_store.delete_edges(session, LoAcMapping, 'lo_id', lo_id)
    outcome_store.delete_edges(session, RoLoMapping, 'lo_id', lo_id)
    outcome_store.delete_node(session, lo, "DELETE_LEARNING_OUTCOME")

    result = PropagationResult()
    return _recalculate_ros(session, ro_ids, result)


def delete_report_outcome(session, ro_id):
    ro = outcome_store.get_node(session, ReportOutcome, ro_id)

    score_store.delete_scores(session, RO, ro_id)
    outcome_store.delete_edges(session, RoLoMapping, 'ro_id', ro_id)
    outcome_store.delete_node(session, ro, "DELETE_REPORT_OUTCOME")
    return PropagationResult()


# ---------------------------------------------------------------------------
# Full rebuild
# ---------------------------------------------------------------------------

def recalculate_scope(session, scope):
    """Recompute every LO and then every RO in a scope from stored AC scores"""
    result = PropagationResult()
    for lo in outcome_store.list_nodes(session, LearningOutcome, scope):
        result.warnings.extend(recalculate_learning_outcome(session, lo.id))
        result.learning_outcomes.add(lo.id)
    for ro in outcome_store.list_nodes(session, ReportOutcome, scope):
        result.warnings.extend(recalculate_report_outcome(session, ro.id))
        result.report_outcomes.add(ro.id)
    return result
