"""Contacts and the factories that create them."""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

import numpy as np

# Fields a copied contact may inherit; transient linkage is never copied.
COPYABLE_FIELDS = ("type_id", "priority", "name", "arrival_time", "attributes")
TRANSIENT_FIELDS = (
    "source",
    "last_queue",
    "last_agent_group",
    "start_waiting_time",
    "start_service_time",
)


@dataclass
class Contact:
    """A request for service (call, e-mail, chat...).

    Attributes:
        type_id: Contact type index.
        priority: Lower values are served first.
        arrival_time: Simulation time of arrival.
        name: Optional label.
        attributes: Free-form user data.
        source: Arrival process that produced the contact.
        last_queue: Queue the contact last waited in (transient).
        last_agent_group: Agent group that last served it (transient).
        start_waiting_time: Time the current wait began, -1 if not waiting.
        start_service_time: Time the current service began, -1 if not served.
    """

    type_id: int = 0
    priority: float = 1.0
    arrival_time: float = 0.0
    name: str = ""
    attributes: Dict[Any, Any] = field(default_factory=dict)
    source: Optional[Any] = None
    last_queue: Optional[Any] = None
    last_agent_group: Optional[Any] = None
    start_waiting_time: float = -1.0
    start_service_time: float = -1.0

    def copy(self, carry: Iterable[str] = COPYABLE_FIELDS) -> "Contact":
        """Create a new contact carrying over only the named fields.

        Args:
            carry: Names of the fields to copy. Transient linkage fields
                (source, queue and agent links, timing marks) are rejected.

        Returns:
            A fresh Contact; fields not carried keep their defaults.

        Raises:
            ValueError: If ``carry`` names a transient or unknown field.
        """
        known = {f.name for f in fields(self)}
        values = {}
        for name in carry:
            if name in TRANSIENT_FIELDS:
                raise ValueError(f"Field '{name}' is transient and cannot be copied")
            if name not in known:
                raise ValueError(f"Unknown contact field '{name}'")
            value = getattr(self, name)
            values[name] = dict(value) if name == "attributes" else value
        return Contact(**values)


class ContactFactory(Protocol):
    """Creates one contact per arrival."""

    def create(self) -> Contact:
        ...


@dataclass
class SimpleContactFactory:
    """Factory producing contacts of a single type and priority."""

    type_id: int = 0
    priority: float = 1.0

    def create(self) -> Contact:
        return Contact(type_id=self.type_id, priority=self.priority)


class RandomTypeContactFactory:
    """Delegates each creation to a factory chosen at random.

    Attributes:
        factories: Candidate factories.
        probabilities: Normalized selection probabilities.
        rng: Stream used for the selection.
    """

    def __init__(
        self,
        factories: Sequence[ContactFactory],
        probabilities: Sequence[float],
        rng: np.random.Generator,
    ) -> None:
        if len(factories) != len(probabilities):
            raise ValueError("factories and probabilities must share the same length")
        if not factories:
            raise ValueError("At least one factory is required")
        probs = np.asarray(probabilities, dtype=float)
        if np.any(probs < 0):
            raise ValueError("Probabilities must be non-negative")
        total = probs.sum()
        if total <= 0:
            raise ValueError("Probabilities must not all be zero")
        self.factories: List[ContactFactory] = list(factories)
        self.probabilities = probs / total
        self.rng = rng

    def create(self) -> Contact:
        k = int(self.rng.choice(len(self.factories), p=self.probabilities))
        return self.factories[k].create()
