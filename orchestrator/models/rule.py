"""
AutomationRule model — declarative trigger → conditions → actions binding.
"""
from sqlalchemy import Column, Text, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from orchestrator.database import Base


class AutomationRule(Base):
    __tablename__ = 'automation_rules'

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    trigger = Column(Text, nullable=False)              # event type, or '*'
    conditions = Column(JSON, default=list)             # ["budget_max > 5000000", ...]
    actions = Column(JSON, default=list)                # ["create_task", {"type": "notify", ...}]
    is_active = Column(Boolean, nullable=False, default=True)
    assigned_worker = Column(Text, default='')
    created_at = Column(DateTime, server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'trigger': self.trigger,
            'conditions': list(self.conditions or []),
            'actions': list(self.actions or []),
            'is_active': self.is_active,
            'assigned_worker': self.assigned_worker,
        }
