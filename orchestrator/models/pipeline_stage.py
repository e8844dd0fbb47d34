"""
PipelineStage configuration — one row per lead status.

conversion_rate / average_time_in_stage are configured values written by
reporting jobs; lead_count and total_value are derived per snapshot.
"""
from sqlalchemy import Column, Integer, Float, Text, DateTime
from sqlalchemy.sql import func

from orchestrator.database import Base


class PipelineStage(Base):
    __tablename__ = 'pipeline_stages'

    id = Column(Text, primary_key=True)        # == lead status
    name = Column(Text, nullable=False)
    position = Column(Integer, nullable=False)
    conversion_rate = Column(Float, default=0.0)
    average_time_in_stage = Column(Float, default=0.0)   # days
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
