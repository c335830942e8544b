from sqlalchemy import Column, Integer, Float, String, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ..database.database import Base


class FunctionExecution(Base):
    __tablename__ = "executions"

    id = Column(Integer, primary_key=True, index=True)
    function_id = Column(Integer, ForeignKey("functions.id", ondelete="CASCADE"), nullable=False, index=True)
    invocation_id = Column(String(36), unique=True, index=True, nullable=False)
    job_name = Column(String(63), nullable=False)
    namespace = Column(String(63), nullable=False)
    status = Column(String(32), nullable=False)  # succeeded, failed, timeout, not_found, error
    log = Column(Text, nullable=True)
    error = Column(String, nullable=True)
    execution_time = Column(Float, nullable=True)  # in seconds, dispatch to log retrieved
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    function = relationship("Function", back_populates="executions")
