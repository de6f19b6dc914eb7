import uuid
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, DateTime, String
from .database import Base
from ..core.models import PaymentStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Registrant(Base):
    """
    Inscrito no workshop.
    """
    __tablename__ = "registrants"

    id = Column(String(36), primary_key=True, default=_new_id)
    full_name = Column(String(200), nullable=False)
    role = Column(String(120), nullable=True)
    cpf = Column(String(11), nullable=False, unique=True, index=True)
    email = Column(String(200), nullable=False, unique=True, index=True)
    phone = Column(String(20), nullable=False)
    company = Column(String(200), nullable=True)
    municipality = Column(String(120), nullable=False)
    postal_code = Column(String(8), nullable=True)
    attends_day_1 = Column(Boolean, nullable=False, default=False)
    attends_day_2 = Column(Boolean, nullable=False, default=False)
    consents_communications = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    wants_certificate = Column(Boolean, nullable=False, default=False)
    payment_status = Column(
        String(20), nullable=False, default=PaymentStatus.NOT_REQUESTED.value
    )
    registration_code = Column(String(10), nullable=False, unique=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "role": self.role,
            "cpf": self.cpf,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "municipality": self.municipality,
            "postal_code": self.postal_code,
            "attends_day_1": self.attends_day_1,
            "attends_day_2": self.attends_day_2,
            "consents_communications": self.consents_communications,
            "is_deleted": self.is_deleted,
            "wants_certificate": self.wants_certificate,
            "payment_status": self.payment_status,
            "registration_code": self.registration_code,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
