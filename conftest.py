import os

import pytest

# Keep test runs from writing app.log into the project directory
os.environ['LOG_FILE'] = ''
os.environ['LOG_LEVEL'] = 'ERROR'

from app import create_app
from models import db, Student, StudentRecord, LoAcMapping, RoLoMapping
from services import outcome_store

SCOPE = {
    'subject': 'Mathematics',
    'year': '2024-2025',
    'quarter': 'Q1',
    'class_name': '7',
    'section': 'A',
}

HEADERS = {
    'subject': 'Mathematics',
    'year': '2024-2025',
    'quarter': 'Q1',
    'classname': '7',
    'section': 'A',
}


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'test.db'}",
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def session(app):
    return db.session


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def scope():
    return dict(SCOPE)


@pytest.fixture
def headers():
    return dict(HEADERS)


def add_student(session, name, section='A'):
    student = Student(name=name)
    session.add(student)
    session.flush()
    record = StudentRecord(student_id=student.id, year=SCOPE['year'],
                           class_name=SCOPE['class_name'], section=section)
    session.add(record)
    session.flush()
    return record


@pytest.fixture
def hierarchy(session, scope):
    """AC1 (10 marks) and AC2 (20 marks) feeding LO1 as h/l, LO1 feeding RO1 as h, two students"""
    ro1 = outcome_store.create_report_outcome(session, scope, 'RO1')
    lo1 = outcome_store.create_learning_outcome(session, scope, 'LO1', [ro1.id])
    ac1 = outcome_store.create_assessment_criteria(session, scope, 'AC1', 10, [lo1.id])
    ac2 = outcome_store.create_assessment_criteria(session, scope, 'AC2', 20, [lo1.id])
    outcome_store.set_edge_priority(session, LoAcMapping, lo1.id, ac1.id, 'h')
    outcome_store.set_edge_priority(session, LoAcMapping, lo1.id, ac2.id, 'l')
    outcome_store.set_edge_priority(session, RoLoMapping, ro1.id, lo1.id, 'h')
    alice = add_student(session, 'Alice')
    bob = add_student(session, 'Bob')
    session.commit()
    return {
        'ac1': ac1.id, 'ac2': ac2.id, 'lo1': lo1.id, 'ro1': ro1.id,
        'alice': alice.id, 'bob': bob.id,
    }
