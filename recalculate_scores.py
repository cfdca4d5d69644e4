import argparse
import logging
import sys

from app import create_app
from models import db, Log
from services.propagation import recalculate_scope


def recalculate(subject, year, class_name=None, dry_run=False):
    """Rebuild every LO/RO weight and derived score for a subject and year"""
    app = create_app()
    with app.app_context():
        scope = {'subject': subject, 'year': year, 'class_name': class_name}
        print(f"Recalculating {subject} {year}" + (f" ({class_name})" if class_name else ""))

        try:
            result = recalculate_scope(db.session, scope)
            if dry_run:
                db.session.rollback()
                print("Dry run: changes rolled back.")
            else:
                db.session.add(Log(action="RECALCULATE_SCORES",
                                   description=f"Full recalculation of {subject} {year}: "
                                               f"{len(result.learning_outcomes)} LOs, "
                                               f"{len(result.report_outcomes)} ROs"))
                db.session.commit()
        except Exception as e:
            db.session.rollback()
            logging.error(f"Full recalculation of {subject} {year} failed: {str(e)}")
            print(f"Recalculation failed, nothing was saved: {e}")
            return 1

        print(f"Learning outcomes recalculated: {len(result.learning_outcomes)}")
        print(f"Report outcomes recalculated: {len(result.report_outcomes)}")
        for warning in result.warnings:
            print(f"  - {warning}")
        return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description='Recalculate learning and report outcome scores')
    parser.add_argument('subject', help='Subject to recalculate')
    parser.add_argument('year', help='Academic year, e.g. 2024-2025')
    parser.add_argument('--class-name', default=None, help='Limit to one class')
    parser.add_argument('--dry-run', action='store_true', help='Compute without saving')
    args = parser.parse_args()

    sys.exit(recalculate(args.subject, args.year, args.class_name, args.dry_run))
