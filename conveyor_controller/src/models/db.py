"""
Database models for run history.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, Float, JSON
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(String(32), primary_key=True)
    pipeline = Column(String(255), nullable=False, index=True)
    repository = Column(String(255))
    commit_sha = Column(String(40), nullable=False)
    ref = Column(String(255), nullable=False)
    trigger = Column(String(50))
    triggered_by = Column(String(255))
    status = Column(String(50), nullable=False)
    error = Column(Text)
    artifacts = Column(JSON)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    steps = relationship(
        "PipelineStep",
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="PipelineStep.step_order",
    )

class PipelineStep(Base):
    __tablename__ = "pipeline_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(32), ForeignKey("pipeline_runs.id", ondelete="CASCADE"))
    name = Column(String(255), nullable=False)
    step_order = Column(Integer, nullable=False)
    exit_code = Column(Integer, nullable=False)
    error = Column(Text)
    logs = Column(Text)
    duration = Column(Float)
    created_at = Column(DateTime, server_default=func.now())

    run = relationship("PipelineRun", back_populates="steps")
