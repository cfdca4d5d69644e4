from flask import Blueprint, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models import db, Log
from errors import GradebookError, ConflictError, StorageError, ValidationError
import logging
import traceback

utility_bp = Blueprint('utility', __name__)

# Header name -> scope field
SCOPE_HEADERS = {
    'subject': 'subject',
    'year': 'year',
    'quarter': 'quarter',
    'classname': 'class_name',
    'section': 'section',
}


def scope_from_headers(required=()):
    """Read the subject/year/quarter/classname/section headers into a scope dict.

    ``required`` lists header names that must be present and non-empty.
    """
    scope = {}
    for header, field in SCOPE_HEADERS.items():
        value = request.headers.get(header)
        scope[field] = value.strip() if value and value.strip() else None

    missing = [header for header in required if scope[SCOPE_HEADERS[header]] is None]
    if missing:
        names = ", ".join(header.capitalize() for header in required)
        raise ValidationError(f"Invalid input. {names} are required in the headers.",
                              details={'missing': missing})
    return scope


def int_arg(name, required=True, aliases=()):
    """Parse an integer query parameter, falling back to ``aliases`` in order"""
    raw = None
    for key in (name,) + tuple(aliases):
        raw = request.args.get(key)
        if raw is not None and raw != '':
            break
    if raw is None or raw == '':
        if required:
            raise ValidationError(f"Query parameter '{name}' is required")
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter '{name}' must be an integer")


def body_int(data, key):
    """Integer field from a request body; None when absent"""
    raw = data.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError(f"Invalid {key} '{raw}'")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {key} '{raw}'")


def json_body(expected=dict):
    data = request.get_json(silent=True)
    if data is None or not isinstance(data, expected):
        kind = {dict: 'object', list: 'array'}.get(expected, 'object or array')
        raise ValidationError(f"Request body must be a JSON {kind}")
    return data


def id_list(data, key, alias=None):
    """Optional list of integer ids from a request body; None when neither key nor alias is present"""
    if key not in data and alias is not None and alias in data:
        key = alias
    if key not in data:
        return None
    values = data[key]
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(f"{key} must be an array of ids")
    try:
        return [int(value) for value in values]
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must contain integer ids")


def run_in_transaction(description, action):
    """Run ``action`` and commit; any failure rolls the whole request back"""
    try:
        result = action()
        db.session.commit()
        return result
    except GradebookError:
        db.session.rollback()
        raise
    except IntegrityError as e:
        db.session.rollback()
        logging.warning(f"Integrity error while trying to {description}: {str(e.orig)}")
        raise ConflictError(f"Could not {description}: a conflicting record already exists")
    except SQLAlchemyError as e:
        db.session.rollback()
        logging.error(f"Database error while trying to {description}: {str(e)}\n{traceback.format_exc()}")
        raise StorageError(f"Could not {description}: database error, no changes were saved")


def mutation_response(message, result=None, status=200, **extra):
    payload = {'success': True, 'message': message}
    payload.update(extra)
    if result is not None:
        payload.update(result.to_dict())
    else:
        payload.setdefault('warnings', [])
    return jsonify(payload), status


@utility_bp.route('/logs', methods=['GET'])
def list_logs():
    """Most recent audit log entries"""
    limit = int_arg('limit', required=False) or 100
    action = request.args.get('action')
    query = Log.query
    if action:
        query = query.filter(Log.action == action)
    logs = query.order_by(Log.timestamp.desc(), Log.id.desc()).limit(min(limit, 1000)).all()
    return jsonify({
        'success': True,
        'logs': [{'id': log.id, 'action': log.action, 'description': log.description,
                  'timestamp': log.timestamp.isoformat() if log.timestamp else None}
                 for log in logs]
    })


@utility_bp.route('/integrity-check', methods=['GET'])
def integrity_check():
    """Run the consistency checks against the live database"""
    from db_integrity_check import check_integrity
    issues = check_integrity(db.session)
    return jsonify({'success': True, 'ok': not any(issues.values()), 'issues': issues})
