# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# Sans cet import, les FK comme qr_tokens.teacher_id → teachers.id échouent
# avec NoReferencedTableError si user.py n'est pas chargé avant qr.py.

from attendqr.models.user import User, Teacher  # noqa: F401 : doit précéder qr
from attendqr.models.student import Student  # noqa: F401
from attendqr.models.course import Course, Enrollment  # noqa: F401
from attendqr.models.qr import QRToken, QRCheckIn  # noqa: F401
from attendqr.models.attendance import Attendance  # noqa: F401
