"""
Lead model — one row per prospective client.

Rows are never deleted; closed_won / closed_lost are terminal statuses.
`version` backs optimistic concurrency (UPDATE ... WHERE version = ?).
"""
from sqlalchemy import Column, Integer, Text, DateTime, CheckConstraint, Index
from sqlalchemy.sql import func

from orchestrator.database import Base


class Lead(Base):
    __tablename__ = 'leads'

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False, default='')
    phone = Column(Text, default='')
    email = Column(Text, default='')
    source = Column(Text, nullable=False, default='website')
    score = Column(Integer, nullable=False, default=0)
    status = Column(Text, nullable=False, default='new')
    priority = Column(Text, nullable=False, default='medium')
    budget_min = Column(Integer, nullable=True)
    budget_max = Column(Integer, nullable=True)
    location = Column(Text, default='')
    property_interest = Column(Text, default='')
    timeline = Column(Text, default='')
    assigned_worker = Column(Text, default='')
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        CheckConstraint('score >= 0 AND score <= 100', name='ck_lead_score_range'),
        Index('ix_leads_status', 'status'),
    )
    __mapper_args__ = {'version_id_col': version}

    @property
    def budget(self):
        """Value used for pipeline totals — budget_max, else budget_min, else 0."""
        if self.budget_max is not None:
            return self.budget_max
        return self.budget_min or 0

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'email': self.email,
            'source': self.source,
            'score': self.score,
            'status': self.status,
            'priority': self.priority,
            'budget_min': self.budget_min,
            'budget_max': self.budget_max,
            'location': self.location,
            'property_interest': self.property_interest,
            'timeline': self.timeline,
            'assigned_worker': self.assigned_worker,
            'version': self.version,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
