"""Generic registries.

Two flavors of registry back the engine:

- PredicateRegistry: an ordered list of (predicate, value, metadata)
  registrations. Lookups return the first registration whose predicate
  accepts the input, so registration order defines precedence.
- NameRegistry: registrations keyed by a unique name.

Both registries are safe for concurrent use. Registration happens rarely
(at startup) and takes a lock; lookups read an immutable snapshot and never
block.
"""

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from repo_credentials.exceptions import RegistrationNotFoundError

I = TypeVar("I")  # noqa: E741
V = TypeVar("V")
M = TypeVar("M")


@dataclass(frozen=True)
class Registration(Generic[I, V, M]):
    """A value registered together with the predicate that selects it.

    Attributes:
        predicate: Called with the lookup input; returns True on a match and
            raises to abort the lookup
        value: Registered value
        metadata: Optional metadata describing the value
    """

    predicate: Callable[[I], bool]
    value: V
    metadata: M | None = None


class PredicateRegistry(Generic[I, V, M]):
    """Ordered registry returning the first registration that matches.

    Example:
        >>> registry = PredicateRegistry()
        >>> registry.register(Registration(lambda s: s.startswith("a"), "A"))
        >>> registry.register(Registration(lambda s: True, "fallback"))
        >>> registry.get("abc").value
        'A'
        >>> registry.get("xyz").value
        'fallback'
    """

    def __init__(
        self, registrations: Iterable[Registration[I, V, M]] | None = None
    ) -> None:
        self._lock = threading.Lock()
        self._registrations: tuple[Registration[I, V, M], ...] = ()
        for registration in registrations or ():
            self.register(registration)

    def register(self, registration: Registration[I, V, M]) -> None:
        """Append a registration.

        Args:
            registration: Registration to append

        Raises:
            ValueError: If the registration has no predicate
        """
        if registration.predicate is None:
            msg = "registration is missing a predicate"
            raise ValueError(msg)
        with self._lock:
            self._registrations = (*self._registrations, registration)

    def get(self, value: I) -> Registration[I, V, M]:
        """Return the first registration whose predicate accepts the input.

        Predicates are evaluated strictly in registration order. An exception
        raised by a predicate aborts the search and propagates unchanged; it
        is never skipped in favor of a later registration.

        Args:
            value: Lookup input passed to each predicate

        Returns:
            First matching registration

        Raises:
            RegistrationNotFoundError: If no predicate accepted the input
        """
        for registration in self._registrations:
            if registration.predicate(value):
                return registration
        msg = "no registration matched the input"
        raise RegistrationNotFoundError(msg)

    def registrations(self) -> list[Registration[I, V, M]]:
        """Return all registrations in registration order."""
        return list(self._registrations)

    def __len__(self) -> int:
        return len(self._registrations)


@dataclass(frozen=True)
class NamedRegistration(Generic[V, M]):
    name: str
    value: V
    metadata: M | None = None


class NameRegistry(Generic[V, M]):
    """Registry of values keyed by a unique name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._registrations: dict[str, NamedRegistration[V, M]] = {}

    def register(self, name: str, value: V, metadata: M | None = None) -> None:
        """Register a value under a name.

        Raises:
            ValueError: If the name is empty or already registered
        """
        if not name:
            msg = "registration name must not be empty"
            raise ValueError(msg)
        with self._lock:
            if name in self._registrations:
                msg = f"name already registered: {name}"
                raise ValueError(msg)
            registrations = dict(self._registrations)
            registrations[name] = NamedRegistration(name, value, metadata)
            self._registrations = registrations

    def get(self, name: str) -> NamedRegistration[V, M]:
        """Return the registration for a name.

        Raises:
            RegistrationNotFoundError: If nothing is registered under the name
        """
        try:
            return self._registrations[name]
        except KeyError:
            msg = f"no registration found for name: {name}"
            raise RegistrationNotFoundError(msg) from None

    def names(self) -> list[str]:
        """Return registered names in registration order."""
        return list(self._registrations)

    def __contains__(self, name: object) -> bool:
        return name in self._registrations
