"""
Circuit breaker with Redis-backed state, guarding calls to the workflow
executor and Slack.

States per service:
  - CLOSED    → calls pass through
  - OPEN      → failure_threshold consecutive failures; calls raise CircuitOpenError
  - HALF_OPEN → reset_timeout elapsed since the last failure; next call is a probe

Keys:
    cb:{name}:state         → closed | open | half_open
    cb:{name}:failures      → consecutive failure count
    cb:{name}:last_failure  → unix timestamp
    cb:{name}:health        → hash of success/failure totals for /api/health

Redis errors never block a call: the breaker behaves as CLOSED.
"""
import logging
import time
from functools import wraps

logger = logging.getLogger('services.circuit_breaker')

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitOpenError(Exception):
    """Raised when calling through an open circuit breaker."""
    def __init__(self, name, retry_after=None):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN — service unavailable")


class CircuitBreaker:
    PREFIX = 'cb'

    def __init__(self, name, redis_client, failure_threshold=3, reset_timeout=300):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    def _key(self, suffix):
        return f'{self.PREFIX}:{self.name}:{suffix}'

    def _seconds_since_failure(self):
        last = self.redis.get(self._key('last_failure'))
        return time.time() - float(last) if last else None

    @property
    def state(self):
        try:
            current = self.redis.get(self._key('state')) or CLOSED
            if current == OPEN:
                elapsed = self._seconds_since_failure()
                if elapsed is not None and elapsed > self.reset_timeout:
                    self.redis.set(self._key('state'), HALF_OPEN)
                    return HALF_OPEN
            return current
        except Exception:
            return CLOSED

    @property
    def failure_count(self):
        try:
            return int(self.redis.get(self._key('failures')) or 0)
        except Exception:
            return 0

    def call(self, func, *args, **kwargs):
        """Run func through the breaker; re-raises func's exception after recording it."""
        if self.state == OPEN:
            retry_after = None
            try:
                elapsed = self._seconds_since_failure()
                if elapsed is not None:
                    retry_after = max(0, self.reset_timeout - elapsed)
            except Exception:
                pass
            raise CircuitOpenError(self.name, retry_after=retry_after)

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def protect(self, func):
        """Decorator form of call()."""
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper

    def _on_success(self):
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.hincrby(self._key('health'), 'success', 1)
            pipe.hset(self._key('health'), 'last_success', str(time.time()))
            pipe.execute()
        except Exception:
            logger.debug("Could not record success for '%s'", self.name, exc_info=True)

    def _on_failure(self, error):
        try:
            failures = self.redis.incr(self._key('failures'))
            now = str(time.time())
            pipe = self.redis.pipeline()
            pipe.set(self._key('last_failure'), now)
            pipe.hincrby(self._key('health'), 'failure', 1)
            pipe.hset(self._key('health'), 'last_failure', now)
            pipe.hset(self._key('health'), 'last_error', str(error)[:200])
            if failures >= self.failure_threshold:
                pipe.set(self._key('state'), OPEN)
            pipe.execute()
            if failures >= self.failure_threshold:
                logger.warning("Circuit '%s' OPENED after %d failures: %s", self.name, failures, error)
            else:
                logger.info("Circuit '%s' failure %d/%d: %s",
                            self.name, failures, self.failure_threshold, error)
        except Exception:
            logger.debug("Could not record failure for '%s'", self.name, exc_info=True)

    def reset(self):
        """Force the breaker back to CLOSED."""
        try:
            pipe = self.redis.pipeline()
            pipe.set(self._key('state'), CLOSED)
            pipe.set(self._key('failures'), 0)
            pipe.delete(self._key('last_failure'))
            pipe.execute()
            logger.info("Circuit '%s' manually reset to CLOSED", self.name)
        except Exception as e:
            logger.error("Failed to reset circuit '%s': %s", self.name, e)

    def get_health(self):
        try:
            data = self.redis.hgetall(self._key('health')) or {}
        except Exception:
            data = {}
        return {
            'name': self.name,
            'state': self.state,
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'reset_timeout': self.reset_timeout,
            'total_success': int(data.get('success', 0)),
            'total_failure': int(data.get('failure', 0)),
            'last_success': float(data['last_success']) if data.get('last_success') else None,
            'last_failure': float(data['last_failure']) if data.get('last_failure') else None,
            'last_error': data.get('last_error', ''),
        }


# ── Registry ────────────────────────────────────────────────────────────────

_registry = {}


def get_breaker(name, redis_client=None, **kwargs):
    """Get or create a named breaker."""
    if name not in _registry:
        if redis_client is None:
            from orchestrator.extensions import redis_client as rc
            redis_client = rc
        _registry[name] = CircuitBreaker(name, redis_client, **kwargs)
    return _registry[name]


def get_all_breakers():
    return dict(_registry)


def init_breakers(redis_client):
    """Register the breakers for every outbound integration."""
    breakers = {
        'workflow_executor': CircuitBreaker('workflow_executor', redis_client, failure_threshold=5, reset_timeout=120),
        'slack': CircuitBreaker('slack', redis_client, failure_threshold=3, reset_timeout=300),
    }
    _registry.update(breakers)
    return breakers
