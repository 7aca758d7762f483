import logging
from typing import Any, Dict, Type, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


class ServiceProvider:
    """
    Holds the process-wide instances of the messaging components.
    The realtime dispatcher and change feed keep state across requests, so
    every request must see the same instance.
    """

    _instances: Dict[Type[T], T] = {}

    @classmethod
    def get_service(cls, service_class: Type[T], **dependencies: Any) -> T:
        """
        Retrieves or creates the single instance of `service_class`.
        Dependencies are only used the first time the instance is built.
        """
        if service_class not in cls._instances:
            try:
                logger.debug(f"Creating instance of {service_class.__name__}")
                cls._instances[service_class] = service_class(**dependencies)
            except Exception as e:
                logger.error(
                    f"Failed to initialize {service_class.__name__}: {e}",
                    exc_info=True,
                )
                raise
        return cls._instances[service_class]

    @classmethod
    def peek(cls, service_class: Type[T]) -> T | None:
        return cls._instances.get(service_class)

    @classmethod
    def clear(cls) -> None:
        """Forgets every instance. Tests call this between cases."""
        logger.debug("Clearing all cached service instances.")
        cls._instances.clear()
