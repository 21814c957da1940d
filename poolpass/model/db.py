from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Index,
)


Base = declarative_base()


# ----------------------------
# ORM models
# ----------------------------
class TicketRow(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    ticket_id = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    gender = Column(String, nullable=False)  # male | female
    amount = Column(Integer, nullable=False)  # whole NGN

    # pending | processing | successful | failed
    payment_status = Column(String, nullable=False, default="pending")
    provider_ref = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("idx_tickets_provider_ref", "provider_ref"),
        Index("idx_tickets_created_at", "created_at"),
    )
