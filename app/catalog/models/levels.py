from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Numeric,
    DateTime,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base


class Level(Base):
    """Fee and duration template offered through waves"""
    __tablename__ = "levels"

    id = Column(Integer, primary_key=True)
    code = Column(String(20), nullable=False, unique=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)

    # Fee schedule (Ariary)
    registration_fee = Column(Numeric(12, 2), nullable=False, default=0)
    tuition_fee = Column(Numeric(12, 2), nullable=False, default=0)
    book_fee = Column(Numeric(12, 2), nullable=False, default=0)
    # How many books at book_fee a student of this level must buy
    required_book_count = Column(Integer, nullable=False, default=1)

    duration_months = Column(Integer, nullable=False, default=2)
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    waves = relationship("Wave", back_populates="level")

    def __repr__(self):
        return f"<Level(id={self.id}, code='{self.code}')>"
