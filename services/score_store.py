"""Per-student score rows for the three tiers.

AC rows are written from raw marks; LO and RO rows are written only by the
propagation engine. All writes are upserts keyed by (student record, node).
"""

import logging
from collections import defaultdict
from decimal import Decimal, InvalidOperation

from errors import NotFoundError, ValidationError
from models import AcScore, LoScore, RoScore, StudentRecord

AC = 'ac'
LO = 'lo'
RO = 'ro'

SCORE_MODELS = {
    AC: (AcScore, 'ac_id'),
    LO: (LoScore, 'lo_id'),
    RO: (RoScore, 'ro_id'),
}


def _model_and_column(tier):
    model, node_field = SCORE_MODELS[tier]
    return model, node_field, getattr(model, node_field)


def to_fraction(obtained_marks, max_marks):
    """Normalize raw marks into [0, 1]; out-of-range marks are rejected"""
    try:
        obtained = Decimal(str(obtained_marks))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid obtained_marks '{obtained_marks}'")
    if not obtained.is_finite():
        raise ValidationError(f"Invalid obtained_marks '{obtained_marks}'")
    max_marks = Decimal(str(max_marks))
    if obtained < 0:
        raise ValidationError(f"obtained_marks {obtained} cannot be negative")
    if obtained > max_marks:
        raise ValidationError(f"obtained_marks {obtained} exceeds max_marks {max_marks}")
    return obtained, float(obtained / max_marks)


def _student_id(raw):
    """Accept an integer id or its string/float spelling; 1.5 and True are not ids"""
    if isinstance(raw, bool):
        raise ValueError(raw)
    if isinstance(raw, float):
        if not raw.is_integer():
            raise ValueError(raw)
        return int(raw)
    if isinstance(raw, (int, str)):
        return int(raw)
    raise TypeError(raw)


def parse_score_entries(scores, max_marks):
    """Validate ``[{student_id, obtained_marks}]``; any bad entry rejects the whole batch"""
    if not isinstance(scores, list) or not scores:
        raise ValidationError("scores must be a non-empty array of {student_id, obtained_marks}")

    parsed = {}
    problems = []
    for entry in scores:
        if not isinstance(entry, dict):
            problems.append(f"invalid entry {entry!r}")
            continue
        student_id = entry.get('student_id')
        obtained = entry.get('obtained_marks')
        if student_id is None or obtained is None:
            problems.append(f"entry {entry!r} needs student_id and obtained_marks")
            continue
        try:
            student_id = _student_id(student_id)
        except (TypeError, ValueError):
            problems.append(f"invalid student_id '{student_id}'")
            continue
        if student_id in parsed:
            problems.append(f"duplicate student_id {student_id}")
            continue
        try:
            parsed[student_id] = to_fraction(obtained, max_marks)
        except ValidationError as e:
            problems.append(f"student {student_id}: {e.message}")

    if problems:
        raise ValidationError("Invalid scores: " + "; ".join(problems),
                              details={'problems': problems})
    return parsed


def require_students(session, student_ids, ac=None):
    """Every id must be an enrollment record; with ``ac``, one in the AC's year, class and section"""
    records = session.query(StudentRecord).filter(StudentRecord.id.in_(list(student_ids))).all()
    missing = sorted(set(student_ids) - {record.id for record in records})
    if missing:
        raise NotFoundError('Student', missing[0] if len(missing) == 1 else missing)
    if ac is None:
        return

    outside = sorted(record.id for record in records
                     if record.year != ac.year or record.class_name != ac.class_name
                     or (ac.section is not None and record.section != ac.section))
    if outside:
        raise ValidationError(
            f"Students {outside} are not enrolled in class {ac.class_name} for {ac.year}"
            + (f" section {ac.section}" if ac.section is not None else ""),
            details={'student_ids': outside})


def upsert_ac_scores(session, ac, entries):
    """Insert or update AC scores. ``entries`` maps student id -> (obtained, value)."""
    require_students(session, entries.keys(), ac)
    existing = {row.student_record_id: row for row in
                session.query(AcScore).filter(AcScore.ac_id == ac.id,
                                              AcScore.student_record_id.in_(list(entries)))}
    inserted = 0
    for student_id, (obtained, value) in entries.items():
        row = existing.get(student_id)
        if row is None:
            session.add(AcScore(student_record_id=student_id, ac_id=ac.id,
                                obtained_marks=obtained, value=value))
            inserted += 1
        else:
            row.obtained_marks = obtained
            row.value = value
    session.flush()
    logging.debug(f"AC {ac.id}: {inserted} scores inserted, {len(entries) - inserted} updated")
    return sorted(entries)


def update_ac_scores(session, ac, entries):
    """Update existing AC scores only; a student without a stored score is an error"""
    require_students(session, entries.keys(), ac)
    existing = {row.student_record_id: row for row in
                session.query(AcScore).filter(AcScore.ac_id == ac.id,
                                              AcScore.student_record_id.in_(list(entries)))}
    missing = sorted(set(entries) - set(existing))
    if missing:
        raise NotFoundError('Assessment score', {'ac_id': ac.id, 'student_ids': missing})
    for student_id, (obtained, value) in entries.items():
        existing[student_id].obtained_marks = obtained
        existing[student_id].value = value
    session.flush()
    return sorted(entries)


def rescale_ac_scores(session, ac, old_max_marks, new_max_marks):
    """Recompute stored AC values against a new ceiling from the raw marks.

    Rows written before raw marks were kept get them back-filled from the old
    ceiling. Returns the affected student ids.
    """
    rows = session.query(AcScore).filter(AcScore.ac_id == ac.id).all()
    old_max_marks = Decimal(str(old_max_marks))
    too_high = []
    for row in rows:
        if row.obtained_marks is None:
            row.obtained_marks = (Decimal(str(row.value)) * old_max_marks).quantize(Decimal('0.01'))
        if Decimal(str(row.obtained_marks)) > new_max_marks:
            too_high.append(row.student_record_id)
    if too_high:
        raise ValidationError(
            f"max_marks {new_max_marks} is below marks already recorded for students {sorted(too_high)}")

    for row in rows:
        row.value = float(Decimal(str(row.obtained_marks)) / new_max_marks)
    session.flush()
    return sorted(row.student_record_id for row in rows)


def scores_by_student(session, tier, node_ids, student_ids=None):
    """Return ``{student_id: {node_id: value}}`` for the given nodes"""
    model, node_field, node_column = _model_and_column(tier)
    result = defaultdict(dict)
    if not node_ids:
        return result
    query = session.query(model).filter(node_column.in_(list(node_ids)))
    if student_ids is not None:
        query = query.filter(model.student_record_id.in_(list(student_ids)))
    for row in query:
        result[row.student_record_id][getattr(row, node_field)] = row.value
    return result


def upsert_derived_scores(session, tier, node_id, values):
    """Write LO/RO values ``{student_id: value}`` for one node"""
    if tier == AC:
        raise ValueError("AC scores are entered from raw marks, not derived")
    model, node_field, node_column = _model_and_column(tier)
    if not values:
        return 0
    existing = {row.student_record_id: row for row in
                session.query(model).filter(node_column == node_id,
                                            model.student_record_id.in_(list(values)))}
    for student_id, value in values.items():
        row = existing.get(student_id)
        if row is None:
            session.add(model(**{'student_record_id': student_id, node_field: node_id, 'value': value}))
        elif row.value != value:
            row.value = value
    session.flush()
    return len(values)


def delete_scores(session, tier, node_id, student_ids=None, keep=()):
    """Delete a node's score rows, optionally limited to ``student_ids`` and sparing ``keep``"""
    model, _, node_column = _model_and_column(tier)
    query = session.query(model).filter(node_column == node_id)
    if student_ids is not None:
        query = query.filter(model.student_record_id.in_(list(student_ids)))
    keep = list(keep)
    if keep:
        query = query.filter(model.student_record_id.notin_(keep))
    return query.delete(synchronize_session='fetch')
