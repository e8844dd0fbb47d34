"""
Error taxonomy shared by the store, scheduler, pipeline and rule engine.

Routes map these onto HTTP status codes (see orchestrator.routes.api).
"""


class OrchestratorError(Exception):
    """Base class for every error the engine surfaces to callers."""
    status_code = 500


class NotFoundError(OrchestratorError):
    """Unknown lead, task or rule id."""
    status_code = 404

    def __init__(self, entity, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} '{entity_id}' not found")


class InvalidTransition(OrchestratorError):
    """Requested state change violates the task or lead pipeline graph."""
    status_code = 409

    def __init__(self, entity, entity_id, current, requested):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"{entity} '{entity_id}': cannot go from '{current}' to '{requested}'"
        )


class RetryExhausted(OrchestratorError):
    """Manual retry past max_retries without the override flag."""
    status_code = 409

    def __init__(self, task_id, retry_count, max_retries):
        self.task_id = task_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Task '{task_id}' exhausted its retries ({retry_count}/{max_retries}); "
            f"pass override=True to force"
        )


class ConcurrencyConflict(OrchestratorError):
    """Optimistic write kept colliding after the store's internal retries."""
    status_code = 409

    def __init__(self, entity, entity_id, attempts):
        self.entity = entity
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"{entity} '{entity_id}' was modified concurrently ({attempts} attempts)"
        )


class ValidationError(OrchestratorError, ValueError):
    """Malformed input: bad enum value, out-of-range number, bad payload."""
    status_code = 400


class RuleEvaluationError(OrchestratorError):
    """A rule condition or action could not be parsed or applied."""
    status_code = 400
