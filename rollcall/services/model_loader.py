"""
Model loading with bounded retry and a circuit breaker.

    UNLOADED -> LOADING -> READY
    LOADING -> FAILED(failure_count, last_failure_at)
    FAILED --(cooldown expired)--> LOADING

A load call makes up to ``max_attempts`` attempts, each bounded by ``timeout``,
backing off exponentially between them. Once every attempt failed the breaker
stays open for ``cooldown`` seconds and calls fail fast.
"""
import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from rollcall.core.config import settings
from rollcall.core.exceptions import ModelUnavailableError
from rollcall.core.logging import get_logger
from rollcall.core.utils.retry import Sleep, retry_async

logger = get_logger(__name__)


class LoaderState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelLoader:
    """
    Loads one model tier and guards it with a circuit breaker.

    Concurrent ``ensure_loaded`` calls share a single in-flight load.

    Example:
        ```python
        loader = ModelLoader("accurate", lambda: detector.load(ModelTier.ACCURATE))
        await loader.ensure_loaded()
        ```
    """

    def __init__(
        self,
        name: str,
        load_fn: Callable[[], Awaitable[None]],
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        cooldown: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._load_fn = load_fn
        self.timeout = timeout if timeout is not None else settings.MODEL_LOAD_TIMEOUT
        self.max_attempts = max_attempts if max_attempts is not None else settings.MODEL_LOAD_MAX_ATTEMPTS
        self.backoff_base = backoff_base if backoff_base is not None else settings.MODEL_LOAD_BACKOFF_BASE
        self.backoff_max = backoff_max if backoff_max is not None else settings.MODEL_LOAD_BACKOFF_MAX
        self.cooldown = cooldown if cooldown is not None else settings.MODEL_RETRY_COOLDOWN
        self._sleep = sleep
        self._clock = clock

        self.state = LoaderState.UNLOADED
        self.failure_count = 0
        self.last_failure_at: Optional[float] = None
        self.last_error: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self.state == LoaderState.READY

    def retry_after(self) -> float:
        """Seconds until the breaker closes again; 0 when it is not open."""
        if self.state != LoaderState.FAILED or self.last_failure_at is None:
            return 0.0
        return max(0.0, self.cooldown - (self._clock() - self.last_failure_at))

    async def ensure_loaded(self) -> None:
        """Load the model unless it is already ready.

        Raises:
            ModelUnavailableError: If the breaker is open or every attempt failed
        """
        if self.state == LoaderState.READY:
            return

        async with self._lock:
            # another caller may have finished the load while we waited
            if self.state == LoaderState.READY:
                return

            remaining = self.retry_after()
            if remaining > 0:
                logger.warning(
                    "Model circuit open, failing fast",
                    model=self.name,
                    failure_count=self.failure_count,
                    retry_after=remaining
                )
                raise ModelUnavailableError(
                    f"Model '{self.name}' unavailable, retry in {remaining:.1f}s",
                    details={
                        "model": self.name,
                        "attempts": self.failure_count,
                        "retry_after": remaining,
                        "last_error": self.last_error,
                    }
                )

            await self._load()

    async def force_reload(self) -> None:
        """Reset the breaker and load again."""
        async with self._lock:
            self.state = LoaderState.UNLOADED
            self.failure_count = 0
            self.last_failure_at = None
            self.last_error = None
            await self._load()

    def status(self) -> Dict[str, object]:
        return {
            "model": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "retry_after": self.retry_after(),
            "last_error": self.last_error,
        }

    async def _load(self) -> None:
        # Caller holds the lock.
        self.state = LoaderState.LOADING
        logger.info("Loading model", model=self.name, timeout=self.timeout)
        started = self._clock()

        def record_failure(attempt: int, error: BaseException) -> None:
            self.failure_count += 1
            self.last_error = str(error) or type(error).__name__

        try:
            await retry_async(
                self._attempt,
                attempts=self.max_attempts,
                base_delay=self.backoff_base,
                max_delay=self.backoff_max,
                retry_on=(ModelUnavailableError, asyncio.TimeoutError, OSError, RuntimeError),
                sleep=self._sleep,
                description=f"load model {self.name}",
                on_failure=record_failure
            )
        except Exception as e:
            self.state = LoaderState.FAILED
            self.last_failure_at = self._clock()
            logger.error(
                "Model load failed, circuit open",
                model=self.name,
                failure_count=self.failure_count,
                cooldown=self.cooldown,
                error=str(e)
            )
            raise ModelUnavailableError(
                f"Failed to load model '{self.name}': {self.last_error or e}",
                details={
                    "model": self.name,
                    "attempts": self.failure_count,
                    "retry_after": self.cooldown,
                }
            ) from e

        self.state = LoaderState.READY
        self.failure_count = 0
        self.last_failure_at = None
        self.last_error = None
        logger.info("Model ready", model=self.name, load_time=self._clock() - started)

    async def _attempt(self) -> None:
        await asyncio.wait_for(self._load_fn(), timeout=self.timeout)
