import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from storefront.domain.exceptions import PaymentAdapterError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayPolicy:
    timeout: float = 15.0
    max_attempts: int = 3
    retry_delay: float = 1.0


async def call_gateway(
    operation: Callable[[], Awaitable[str]],
    policy: GatewayPolicy,
    description: str,
) -> str:
    """Run a gateway call with a timeout and a bounded number of attempts.

    Only PaymentAdapterError (and timeouts, which become one) are retried.
    Declines propagate on the first attempt.
    """
    last_error = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=policy.timeout)
        except asyncio.TimeoutError:
            last_error = PaymentAdapterError(f"{description} timed out after {policy.timeout}s")
        except PaymentAdapterError as e:
            last_error = e

        logger.warning(f"{description} failed (attempt {attempt}/{policy.max_attempts}): {last_error}")
        if attempt < policy.max_attempts:
            await asyncio.sleep(policy.retry_delay)

    logger.error(f"{description} failed after {policy.max_attempts} attempts")
    raise last_error
