"""Circuit breaker para proteger servicios externos"""
from enum import Enum
from typing import Callable, Any
import asyncio
import logging
import time

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Circuit is open, fail fast
    HALF_OPEN = "half_open"  # Testing if service is back


class CircuitOpenError(Exception):
    """El circuito está abierto y la llamada no se intentó"""


class CircuitBreaker:
    """Circuit breaker pattern implementation"""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time = None
        self.state = CircuitState.CLOSED

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """Ejecutar función con circuit breaker"""
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker {self.name} en HALF_OPEN, probando servicio")
            else:
                raise CircuitOpenError(f"Circuit breaker {self.name} is OPEN")

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Verificar si se debe intentar resetear el circuito"""
        if self.last_failure_time:
            return (time.monotonic() - self.last_failure_time) >= self.recovery_timeout
        return True

    def _on_success(self):
        self.failure_count = 0
        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit breaker {self.name} abierto tras {self.failure_count} fallos"
                )
            self.state = CircuitState.OPEN
