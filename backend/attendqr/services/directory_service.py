"""
Consultation des annuaires externes au module QR : cours, enseignants,
élèves et inscriptions. Lecture seule.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendqr.models.course import Course, Enrollment
from attendqr.models.student import Student
from attendqr.models.user import Teacher


def get_course(db: Session, course_id: uuid.UUID) -> Optional[Course]:
    return db.execute(select(Course).where(Course.id == course_id)).scalar()


def get_teacher(db: Session, teacher_id: uuid.UUID) -> Optional[Teacher]:
    """Retourne le profil enseignant avec son utilisateur (chargé en jointure)."""
    return db.execute(select(Teacher).where(Teacher.id == teacher_id)).scalar()


def get_student_by_user(db: Session, user_id: uuid.UUID) -> Optional[Student]:
    return db.execute(select(Student).where(Student.user_id == user_id)).scalar()


def is_enrolled(db: Session, course_id: uuid.UUID, student_id: uuid.UUID) -> bool:
    enrollment = db.execute(
        select(Enrollment).where(
            Enrollment.course_id == course_id,
            Enrollment.student_id == student_id,
        )
    ).scalar()
    return enrollment is not None
