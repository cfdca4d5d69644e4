from flask import Blueprint, jsonify
from models import db, Student, StudentRecord, Log
from routes.utility_routes import scope_from_headers, json_body, run_in_transaction, mutation_response
from errors import NotFoundError, ValidationError
import logging

student_bp = Blueprint('student', __name__)


def _record_to_dict(record):
    return {
        'student_id': record.id,
        'student_ref': record.student_id,
        'name': record.student.name,
        'year': record.year,
        'class_name': record.class_name,
        'section': record.section,
        'active': record.active,
    }


@student_bp.route('/students', methods=['GET'])
def list_students():
    """Enrollment records for a year, optionally narrowed to class and section"""
    scope = scope_from_headers(required=('year',))
    query = (StudentRecord.query.join(Student, Student.id == StudentRecord.student_id)
             .filter(StudentRecord.year == scope['year']))
    if scope['class_name']:
        query = query.filter(StudentRecord.class_name == scope['class_name'])
    if scope['section']:
        query = query.filter(StudentRecord.section == scope['section'])
    records = query.order_by(Student.name, StudentRecord.id).all()
    return jsonify({'success': True, 'students': [_record_to_dict(record) for record in records]})


def _enroll(scope, data):
    name = data.get('name')
    existing_id = data.get('student_ref')
    if existing_id is not None:
        try:
            student = db.session.get(Student, int(existing_id))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid student_ref '{existing_id}'")
        if student is None:
            raise NotFoundError('Student', existing_id)
    else:
        if not name or not str(name).strip():
            raise ValidationError('name is required')
        student = Student(name=str(name).strip())
        db.session.add(student)
        db.session.flush()

    record = StudentRecord(student_id=student.id, year=scope['year'],
                           class_name=scope['class_name'], section=scope['section'])
    db.session.add(record)
    db.session.flush()
    db.session.add(Log(action="ADD_STUDENT",
                       description=f"Enrolled {student.name} ({student.id}) in "
                                   f"{record.class_name}-{record.section} for {record.year}"))
    return record


@student_bp.route('/students', methods=['POST'])
def add_student():
    """Create a student (or reuse one by student_ref) and enroll them in the header class"""
    scope = scope_from_headers(required=('year', 'classname', 'section'))
    data = json_body()
    record = run_in_transaction("add student", lambda: _enroll(scope, data))
    logging.info(f"Enrolled student record {record.id}")
    return mutation_response('Student added', status=201, insertedId=record.id,
                             student=_record_to_dict(record))


@student_bp.route('/students/<int:student_id>', methods=['GET'])
def get_student(student_id):
    record = db.session.get(StudentRecord, student_id)
    if record is None:
        raise NotFoundError('Student', student_id)
    return jsonify({'success': True, 'student': _record_to_dict(record)})
