from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def __contains__(self, name: str) -> bool:
        return name in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Transport Registry - message delivery providers
class Transport(Protocol):
    """Protocol for delivery transports (log, smtp, http_api)."""

    name: str

    async def deliver(self, target: str, message: Any) -> Any:
        """
        Deliver a rendered message to a single destination.

        Returns a DeliveryOutcome:
        {
            "success": bool,
            "provider": str,
            "message_id": Optional[str],
            "error": Optional[str]
        }
        """
        ...

    async def verify(self) -> None:
        """Check that the provider is reachable; raise if it is not."""
        ...


class TransportFactory(Protocol):
    """Builds a transport from process settings."""

    def __call__(self, settings: Any) -> Transport: ...


class TransportRegistry(Registry[TransportFactory]):
    """Registry for transport factories keyed by EMAIL_PROVIDER value."""

    def __init__(self):
        super().__init__("Transport")


# Global registry instances (singletons)
transport_registry = TransportRegistry()
