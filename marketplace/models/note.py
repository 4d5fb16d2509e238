import uuid
from sqlalchemy import Column, Integer, String, TIMESTAMP
from sqlalchemy.sql import func
from marketplace.db import Base


class Note(Base):
    __tablename__ = "notes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    seller_id = Column(String(36), nullable=False)
    title = Column(String(255), nullable=False)
    file_url = Column(String(1000))

    purchase_count = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
