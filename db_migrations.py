import logging
import traceback
from sqlalchemy import inspect, text

# Columns added after the first release: (table, column, DDL fragment)
REQUIRED_COLUMNS = [
    ('ac_score', 'obtained_marks', 'NUMERIC(10,2)'),
    ('lo_ac_mapping', 'weight', 'FLOAT'),
    ('ro_lo_mapping', 'weight', 'FLOAT'),
    ('student_record', 'active', 'BOOLEAN DEFAULT 1 NOT NULL'),
]


def _add_column(engine, table, column, ddl):
    logging.info(f"Adding {column} column to {table} table")
    with engine.begin() as connection:
        connection.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
        connection.execute(
            text("INSERT INTO log (action, description, timestamp) VALUES (:action, :description, CURRENT_TIMESTAMP)"),
            {'action': 'MIGRATION_ADD_COLUMN', 'description': f"Auto-added {table}.{column}"}
        )
    logging.info(f"Successfully added {column} column to {table} table")


def check_and_update_database(app):
    """
    Check and update the database schema if necessary.
    This function runs at app startup to handle migrations for new columns.
    Returns the list of columns that were added, or None when the check failed.
    """
    logging.info("Checking database schema for required columns...")
    added = []

    try:
        with app.app_context():
            # Get database engine
            from models import db
            engine = db.engine
            inspector = inspect(engine)
            tables = set(inspector.get_table_names())

            for table, column, ddl in REQUIRED_COLUMNS:
                if table not in tables:
                    logging.warning(f"{table} table not found. It will be created when the app runs.")
                    continue

                columns = [c['name'] for c in inspector.get_columns(table)]
                if column in columns:
                    logging.info(f"{column} column already exists in {table} table")
                    continue

                _add_column(engine, table, column, ddl)
                added.append(f"{table}.{column}")

        return added

    except Exception as e:
        error_traceback = traceback.format_exc()
        logging.error(f"Error checking or updating database schema: {str(e)}\n{error_traceback}")
        return None
