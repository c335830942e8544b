from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from ..database.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    functions = relationship("Function", back_populates="owner", cascade="all, delete-orphan")


class Function(Base):
    __tablename__ = "functions"
    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_functions_user_name"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)
    content = Column(Text, nullable=False)
    runtime = Column(String(64), nullable=False)
    image = Column(String(512), nullable=False)  # registry/user/function
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="functions")
    executions = relationship("FunctionExecution", back_populates="function", cascade="all, delete-orphan")
