from orchestrator.models.lead import Lead
from orchestrator.models.task import AutomatedTask
from orchestrator.models.rule import AutomationRule
from orchestrator.models.pipeline_stage import PipelineStage

__all__ = ['Lead', 'AutomatedTask', 'AutomationRule', 'PipelineStage']
