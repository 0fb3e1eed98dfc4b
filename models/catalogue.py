from sqlalchemy import Column, String, Date, Integer
from models.base import Base, RosterMixin, JSONType


class AcademicPeriod(RosterMixin, Base):
    """
    Academic years and their terms.

    Years are keyed ``year:<id>`` and terms ``term:<id>``; a term's
    ``parent_key`` is the key of its year.
    """
    __tablename__ = "academic_periods"

    period_type = Column(String(10), nullable=False)
    name = Column(String(255), nullable=True)
    program_code = Column(String(50), nullable=True)
    starts_on = Column(Date, nullable=True)
    ends_on = Column(Date, nullable=True)
    parent_key = Column(String(255), nullable=True)
    attributes = Column(JSONType, nullable=True)


class GradeLevel(RosterMixin, Base):
    __tablename__ = "grade_levels"

    name = Column(String(255), nullable=True)
    label = Column(String(255), nullable=True)
    code = Column(String(50), nullable=True)
    program_code = Column(String(50), nullable=True)
    grade_number = Column(Integer, nullable=True)


class Subject(RosterMixin, Base):
    __tablename__ = "subjects"

    name = Column(String(255), nullable=True)
    program_code = Column(String(50), nullable=True)
    group_key = Column(String(255), nullable=True)
    group_name = Column(String(255), nullable=True)
    attributes = Column(JSONType, nullable=True)
