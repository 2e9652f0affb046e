import uuid

from sqlalchemy import Boolean, Column, Integer, Numeric, Text, Uuid

from botengine.database import Base


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    name = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    duration_days = Column(Integer, default=30)
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
