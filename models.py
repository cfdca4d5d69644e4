# --- START OF FILE models.py ---

from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Index

# Create a db instance to be initialized later
db = SQLAlchemy()


class ScopeMixin:
    """Columns shared by every outcome tier: subject, academic year, term, class and optional section"""
    subject = db.Column(db.String(100), nullable=False, index=True)
    year = db.Column(db.String(20), nullable=False, index=True)
    quarter = db.Column(db.String(20), nullable=True, index=True)
    class_name = db.Column(db.String(50), nullable=False, index=True)
    section = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def scope_dict(self):
        return {
            'subject': self.subject,
            'year': self.year,
            'quarter': self.quarter,
            'class_name': self.class_name,
            'section': self.section,
        }


class AssessmentCriteria(ScopeMixin, db.Model):
    """Assessment criterion (AC): the tier teachers enter raw marks against"""
    __tablename__ = 'assessment_criteria'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    max_marks = db.Column(db.Numeric(10, 2), nullable=False)

    lo_mappings = db.relationship('LoAcMapping', backref='assessment_criteria', lazy=True,
                                  cascade="all, delete-orphan", passive_deletes=True)
    scores = db.relationship('AcScore', backref='assessment_criteria', lazy=True,
                             cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index('idx_ac_scope', 'subject', 'year', 'quarter', 'class_name'),
    )

    def __repr__(self):
        return f"<AssessmentCriteria {self.id}: {self.name}>"


class LearningOutcome(ScopeMixin, db.Model):
    """Learning outcome (LO): scored from its weighted ACs"""
    __tablename__ = 'learning_outcome'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)

    ac_mappings = db.relationship('LoAcMapping', backref='learning_outcome', lazy=True,
                                  cascade="all, delete-orphan", passive_deletes=True)
    ro_mappings = db.relationship('RoLoMapping', backref='learning_outcome', lazy=True,
                                  cascade="all, delete-orphan", passive_deletes=True)
    scores = db.relationship('LoScore', backref='learning_outcome', lazy=True,
                             cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index('idx_lo_scope', 'subject', 'year', 'quarter', 'class_name'),
    )

    def __repr__(self):
        return f"<LearningOutcome {self.id}: {self.name}>"


class ReportOutcome(ScopeMixin, db.Model):
    """Report outcome (RO): scored from its weighted LOs"""
    __tablename__ = 'report_outcome'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)

    lo_mappings = db.relationship('RoLoMapping', backref='report_outcome', lazy=True,
                                  cascade="all, delete-orphan", passive_deletes=True)
    scores = db.relationship('RoScore', backref='report_outcome', lazy=True,
                             cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index('idx_ro_scope', 'subject', 'year', 'class_name'),
    )

    def __repr__(self):
        return f"<ReportOutcome {self.id}: {self.name}>"


class LoAcMapping(db.Model):
    """AC -> LO edge. priority is 'h'/'m'/'l' or NULL; weight is derived"""
    __tablename__ = 'lo_ac_mapping'
    id = db.Column(db.Integer, primary_key=True)
    lo_id = db.Column(db.Integer, db.ForeignKey('learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    ac_id = db.Column(db.Integer, db.ForeignKey('assessment_criteria.id', ondelete='CASCADE'), nullable=False, index=True)
    priority = db.Column(db.String(1), nullable=True)
    weight = db.Column(db.Float, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('lo_id', 'ac_id', name='_lo_ac_uc'),
    )

    @property
    def source_id(self):
        return self.ac_id

    def __repr__(self):
        return f"<LoAcMapping AC {self.ac_id} -> LO {self.lo_id} ({self.priority})>"


class RoLoMapping(db.Model):
    """LO -> RO edge. priority is 'h'/'m'/'l' or NULL; weight is derived"""
    __tablename__ = 'ro_lo_mapping'
    id = db.Column(db.Integer, primary_key=True)
    ro_id = db.Column(db.Integer, db.ForeignKey('report_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    lo_id = db.Column(db.Integer, db.ForeignKey('learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    priority = db.Column(db.String(1), nullable=True)
    weight = db.Column(db.Float, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('ro_id', 'lo_id', name='_ro_lo_uc'),
    )

    @property
    def source_id(self):
        return self.lo_id

    def __repr__(self):
        return f"<RoLoMapping LO {self.lo_id} -> RO {self.ro_id} ({self.priority})>"


class Student(db.Model):
    """Student model"""
    __tablename__ = 'student'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    records = db.relationship('StudentRecord', backref='student', lazy=True, cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Student {self.id}: {self.name}>"


class StudentRecord(db.Model):
    """Enrollment of a student into a class/section for an academic year.
    Scores are keyed by this record."""
    __tablename__ = 'student_record'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student.id', ondelete='CASCADE'), nullable=False, index=True)
    year = db.Column(db.String(20), nullable=False, index=True)
    class_name = db.Column(db.String(50), nullable=False, index=True)
    section = db.Column(db.String(20), nullable=False, index=True)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_id', 'year', 'class_name', 'section', name='_student_enrollment_uc'),
        Index('idx_student_record_class', 'year', 'class_name', 'section'),
    )

    def __repr__(self):
        return f"<StudentRecord {self.id}: Student {self.student_id} in {self.class_name}-{self.section} ({self.year})>"


class AcScore(db.Model):
    """Normalized AC score; obtained_marks keeps the raw entry so a max_marks change can rescale it"""
    __tablename__ = 'ac_score'
    id = db.Column(db.Integer, primary_key=True)
    student_record_id = db.Column(db.Integer, db.ForeignKey('student_record.id', ondelete='CASCADE'), nullable=False, index=True)
    ac_id = db.Column(db.Integer, db.ForeignKey('assessment_criteria.id', ondelete='CASCADE'), nullable=False, index=True)
    obtained_marks = db.Column(db.Numeric(10, 2), nullable=True)
    value = db.Column(db.Float, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_record_id', 'ac_id', name='_ac_score_uc'),
    )

    def __repr__(self):
        return f"<AcScore {self.value} for Student {self.student_record_id} on AC {self.ac_id}>"


class LoScore(db.Model):
    """Derived LO score, written only by the propagation engine"""
    __tablename__ = 'lo_score'
    id = db.Column(db.Integer, primary_key=True)
    student_record_id = db.Column(db.Integer, db.ForeignKey('student_record.id', ondelete='CASCADE'), nullable=False, index=True)
    lo_id = db.Column(db.Integer, db.ForeignKey('learning_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    value = db.Column(db.Float, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_record_id', 'lo_id', name='_lo_score_uc'),
    )

    def __repr__(self):
        return f"<LoScore {self.value} for Student {self.student_record_id} on LO {self.lo_id}>"


class RoScore(db.Model):
    """Derived RO score, written only by the propagation engine"""
    __tablename__ = 'ro_score'
    id = db.Column(db.Integer, primary_key=True)
    student_record_id = db.Column(db.Integer, db.ForeignKey('student_record.id', ondelete='CASCADE'), nullable=False, index=True)
    ro_id = db.Column(db.Integer, db.ForeignKey('report_outcome.id', ondelete='CASCADE'), nullable=False, index=True)
    value = db.Column(db.Float, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.UniqueConstraint('student_record_id', 'ro_id', name='_ro_score_uc'),
    )

    def __repr__(self):
        return f"<RoScore {self.value} for Student {self.student_record_id} on RO {self.ro_id}>"


class Log(db.Model):
    """Log model"""
    __tablename__ = 'log'
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.now, index=True)

    def __repr__(self):
        return f"<Log {self.action} at {self.timestamp}>"

# --- END OF FILE models.py ---
