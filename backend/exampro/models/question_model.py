from exampro.db import Base
import uuid
from sqlalchemy import Column, Integer, String, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB


class QuestionDB(Base):
    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    text = Column(String, nullable=False)
    # ordered list of option strings; JSONB on PostgreSQL
    options = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    correct_option = Column(Integer, nullable=False)
    points = Column(Integer, default=1, nullable=False)
