import asyncio
import logging
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from topoflow.messaging.errors import CallTimeoutError, TransportError, from_client_error


class ServiceFacade:
    """Base for the queue, pub/sub and router clients

    Wraps one backend client handle. The handle is shared read-only and
    may be invoked concurrently; the façade keeps no per-call state.
    """
    service_name: str = ""

    def __init__(self, client: Any, *, timeout: float = 30.0, logger: Optional[logging.Logger] = None):
        """Initialize the façade

        :param client: Backend client exposing the service's request operations
        :type client: Any
        :param timeout: Per-call bound in seconds
        :type timeout: float
        :param logger: Logger instance, uses standard library logging if None
        :type logger: Optional[logging.Logger]
        """
        if client is None:
            raise ValueError(f"{self.service_name} client can not be None")
        self._client = client
        self._timeout = timeout
        self._logger = logger if logger is not None else logging.getLogger(self.__module__)

    async def _call(self, operation: str, *, extra_timeout: float = 0.0, **params: Any) -> Dict[str, Any]:
        """Invoke one backend operation

        Args:
            operation: Operation name on the backend client, e.g. ``send_message``
            extra_timeout: Seconds added to the per-call bound (long polls)
            **params: Request parameters

        Returns:
            The response document

        Raises:
            MessagingError: Subclass matching the backend error code
            TransportError: If the backend could not be reached
            CallTimeoutError: If the call exceeded its bound
        """
        method = getattr(self._client, operation)
        bound = self._timeout + extra_timeout
        self._logger.debug(f"{self.service_name}.{operation} {params}")
        try:
            return await asyncio.wait_for(method(**params), timeout=bound)
        except asyncio.TimeoutError as e:
            raise CallTimeoutError(
                f"no response within {bound:g}s",
                service=self.service_name,
                operation=operation,
            ) from e
        except ClientError as e:
            raise from_client_error(self.service_name, operation, e) from e
        except BotoCoreError as e:
            raise TransportError(str(e), service=self.service_name, operation=operation) from e
