import os
import sys
from collections import defaultdict
from flask import Flask

from models import (
    db, AssessmentCriteria, LearningOutcome, ReportOutcome,
    LoAcMapping, RoLoMapping, AcScore, LoScore, RoScore, StudentRecord
)

WEIGHT_TOLERANCE = 1e-9

# (child model, fk column, parent model)
FOREIGN_KEYS = [
    (LoAcMapping, 'lo_id', LearningOutcome),
    (LoAcMapping, 'ac_id', AssessmentCriteria),
    (RoLoMapping, 'ro_id', ReportOutcome),
    (RoLoMapping, 'lo_id', LearningOutcome),
    (AcScore, 'ac_id', AssessmentCriteria),
    (AcScore, 'student_record_id', StudentRecord),
    (LoScore, 'lo_id', LearningOutcome),
    (LoScore, 'student_record_id', StudentRecord),
    (RoScore, 'ro_id', ReportOutcome),
    (RoScore, 'student_record_id', StudentRecord),
]


def create_check_app():
    """Creates a minimal Flask app for the integrity check."""
    app = Flask(__name__)
    base_dir = os.path.abspath(os.path.dirname(__file__))
    db_path = os.path.join(base_dir, "instance", "gradebook.db")
    database_url = os.environ.get('DATABASE_URL')

    if database_url is None and not os.path.exists(db_path):
        print(f"Error: Database file not found at {db_path}")
        print("Set DATABASE_URL or run the app once to create the database.")
        sys.exit(1)

    app.config['SQLALCHEMY_DATABASE_URI'] = database_url or f'sqlite:///{db_path}'
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    db.init_app(app)
    return app


def check_foreign_key(session, model, fk_column_name, related_model):
    """Returns descriptions of rows whose foreign key points at a missing parent."""
    fk_column = getattr(model, fk_column_name)
    child_ids = {row[0] for row in session.query(fk_column).filter(fk_column.isnot(None)).distinct()}
    if not child_ids:
        return []

    parent_ids = {row[0] for row in session.query(related_model.id)}
    orphaned_ids = child_ids - parent_ids
    if not orphaned_ids:
        return []

    records = session.query(model).filter(fk_column.in_(orphaned_ids)).all()
    return [f"{model.__tablename__} {record.id} references missing "
            f"{related_model.__tablename__} {getattr(record, fk_column_name)}"
            for record in records]


def check_weights(session, edge_model, target_field):
    """Prioritized weights of each target must sum to 1; unprioritized edges carry no weight."""
    issues = []
    by_target = defaultdict(list)
    for edge in session.query(edge_model):
        by_target[getattr(edge, target_field)].append(edge)

    for target_id, edges in sorted(by_target.items()):
        label = f"{edge_model.__tablename__} target {target_id}"
        prioritized = [edge for edge in edges if edge.priority is not None]
        for edge in edges:
            if edge.priority is None and edge.weight is not None:
                issues.append(f"{label}: unprioritized edge {edge.id} has weight {edge.weight}")
            if edge.priority is not None and edge.weight is None:
                issues.append(f"{label}: prioritized edge {edge.id} has no weight")
        if prioritized and all(edge.weight is not None for edge in prioritized):
            total = sum(edge.weight for edge in prioritized)
            if abs(total - 1.0) > WEIGHT_TOLERANCE:
                issues.append(f"{label}: weights sum to {total}")
    return issues


def check_score_ranges(session):
    issues = []
    for model in (AcScore, LoScore, RoScore):
        rows = session.query(model).filter((model.value < 0) | (model.value > 1))
        issues.extend(f"{model.__tablename__} {row.id} has value {row.value}" for row in rows)
    return issues


def check_stale_derived_scores(session):
    """LO/RO scores on targets that have no prioritized incoming edge."""
    issues = []
    for score_model, edge_model, field in ((LoScore, LoAcMapping, 'lo_id'), (RoScore, RoLoMapping, 'ro_id')):
        scored = {row[0] for row in session.query(getattr(score_model, field)).distinct()}
        prioritized = {row[0] for row in session.query(getattr(edge_model, field))
                       .filter(edge_model.priority.isnot(None)).distinct()}
        for target_id in sorted(scored - prioritized):
            count = session.query(score_model).filter(getattr(score_model, field) == target_id).count()
            issues.append(f"{score_model.__tablename__}: {count} score(s) on {field} {target_id} "
                          f"which has no prioritized mapping")
    return issues


def check_integrity(session):
    """Run every check and return ``{check_name: [issue, ...]}``."""
    orphaned = []
    for model, fk_column_name, related_model in FOREIGN_KEYS:
        orphaned.extend(check_foreign_key(session, model, fk_column_name, related_model))
    return {
        'orphaned_references': orphaned,
        'weight_sums': check_weights(session, LoAcMapping, 'lo_id') + check_weights(session, RoLoMapping, 'ro_id'),
        'score_ranges': check_score_ranges(session),
        'stale_derived_scores': check_stale_derived_scores(session),
    }


def run_integrity_check():
    """Runs the database integrity checks."""
    app = create_check_app()

    with app.app_context():
        print("Starting database integrity check...")
        issues = check_integrity(db.session)

        total = 0
        for name, found in issues.items():
            print(f"\n{name.replace('_', ' ').capitalize()}: {len(found)}")
            for issue in found[:20]:
                print(f"  - {issue}")
            if len(found) > 20:
                print(f"  - ... and {len(found) - 20} more.")
            total += len(found)

        # --- Summary ---
        print("\nIntegrity Check Complete.")
        if total == 0:
            print("No problems found. Database integrity looks good!")
        else:
            print(f"Found a total of {total} potential problems.")
            print("Run recalculate_scores.py to rebuild weights and derived scores.")

        return total


if __name__ == "__main__":
    sys.exit(1 if run_integrity_check() else 0)
