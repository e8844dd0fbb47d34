"""
Task scheduling: state machine (task_scheduler) and the periodic tick driver (loop).
"""
from orchestrator.scheduler.task_scheduler import TaskScheduler, TickResult, backoff_seconds

__all__ = ['TaskScheduler', 'TickResult', 'backoff_seconds']
