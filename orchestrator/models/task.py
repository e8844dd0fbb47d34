"""
AutomatedTask model — a unit of automated work, optionally targeting a Lead.

Status changes go exclusively through orchestrator.scheduler.TaskScheduler.
The `metadata` column holds the typed payload (see orchestrator.models.payloads);
it is exposed as `payload` because `metadata` is reserved on declarative models.
"""
from sqlalchemy import Column, Integer, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.sql import func

from orchestrator.database import Base


def _iso(value):
    return value.isoformat() if value else None


class AutomatedTask(Base):
    __tablename__ = 'automated_tasks'

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text, default='')
    type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default='scheduled')
    priority = Column(Text, nullable=False, default='medium')
    assigned_worker = Column(Text, default='')
    target_entity = Column(Text, ForeignKey('leads.id'), nullable=True)
    scheduled_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    attempt_started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    estimated_duration = Column(Integer, nullable=False)   # minutes
    actual_duration = Column(Integer, nullable=True)       # minutes
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    next_retry_at = Column(DateTime, nullable=True)
    workflow_id = Column(Text, default='')
    payload = Column('metadata', JSON, default=dict)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('ix_automated_tasks_status', 'status'),
        Index('ix_automated_tasks_next_retry_at', 'next_retry_at'),
        Index('ix_automated_tasks_target_entity', 'target_entity'),
    )
    __mapper_args__ = {'version_id_col': version}

    @property
    def retries_left(self):
        return max(0, self.max_retries - self.retry_count)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'type': self.type,
            'status': self.status,
            'priority': self.priority,
            'assigned_worker': self.assigned_worker,
            'target_entity': self.target_entity,
            'scheduled_at': _iso(self.scheduled_at),
            'started_at': _iso(self.started_at),
            'attempt_started_at': _iso(self.attempt_started_at),
            'completed_at': _iso(self.completed_at),
            'estimated_duration': self.estimated_duration,
            'actual_duration': self.actual_duration,
            'error_message': self.error_message,
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'next_retry_at': _iso(self.next_retry_at),
            'workflow_id': self.workflow_id,
            'metadata': self.payload or {},
            'version': self.version,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
