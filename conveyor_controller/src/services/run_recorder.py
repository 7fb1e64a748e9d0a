"""
Record finished runs and their steps in the database.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.orm import sessionmaker, selectinload

from conveyor_controller.src.config import get_settings
from conveyor_controller.src.models.db import Base, PipelineRun, PipelineStep
from conveyor_controller.src.models.run import Run

logger = logging.getLogger(__name__)

class RunRecorder:
    """Run observer that persists runs once they reach a terminal state."""

    def __init__(self, database_url: Optional[str] = None):
        database_url = database_url or get_settings().database_url
        self.engine = create_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)
        Base.metadata.create_all(self.engine)

    def __call__(self, run: Run):
        if run.is_terminal:
            self.record(run)

    def record(self, run: Run):
        """Insert or replace the run and its step results."""
        with self.SessionLocal() as session:
            row = session.get(PipelineRun, run.id)
            if row is None:
                row = PipelineRun(id=run.id)
                session.add(row)

            row.pipeline = run.pipeline
            row.repository = run.repository
            row.commit_sha = run.commit_sha
            row.ref = run.ref
            row.trigger = run.trigger.value
            row.triggered_by = run.triggered_by
            row.status = run.state.value
            row.error = run.error
            row.artifacts = list(run.artifacts)
            row.started_at = run.started_at
            row.finished_at = run.finished_at
            row.updated_at = datetime.utcnow()
            row.steps = [
                PipelineStep(
                    name=step.name,
                    step_order=step.position,
                    exit_code=step.exit_code,
                    error=step.error,
                    logs=step.output,
                    duration=step.duration,
                )
                for step in run.steps
            ]
            session.commit()
            logger.info(f"Recorded run {run.id} ({run.pipeline}) as {run.state.value}")

    def recent_runs(self, limit: int = 20, offset: int = 0, pipeline: Optional[str] = None) -> List[Dict[str, Any]]:
        """List recorded runs, newest first."""
        with self.SessionLocal() as session:
            query = (
                select(PipelineRun)
                .options(selectinload(PipelineRun.steps))
                .order_by(PipelineRun.finished_at.desc())
            )
            if pipeline:
                query = query.where(PipelineRun.pipeline == pipeline)
            rows = session.execute(query.limit(limit).offset(offset)).scalars().all()

            return [
                {
                    "id": r.id,
                    "pipeline": r.pipeline,
                    "repository": r.repository,
                    "commit_sha": r.commit_sha,
                    "ref": r.ref,
                    "status": r.status,
                    "error": r.error,
                    "artifacts": r.artifacts or [],
                    "started_at": r.started_at,
                    "finished_at": r.finished_at,
                    "steps": [
                        {
                            "order": s.step_order,
                            "name": s.name,
                            "exit_code": s.exit_code,
                            "error": s.error,
                            "duration": s.duration,
                        }
                        for s in r.steps
                    ],
                }
                for r in rows
            ]

    def stats(self) -> Dict[str, Any]:
        """Count recorded runs by status."""
        with self.SessionLocal() as session:
            result = session.execute(
                select(PipelineRun.status, func.count(PipelineRun.id))
                .group_by(PipelineRun.status)
            )
            status_counts = {row[0]: row[1] for row in result.all()}

        return {
            "runs": status_counts,
            "total_runs": sum(status_counts.values()),
        }

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
