"""Exception types shared across the arrival-process and estimation layers.

Configuration problems are reported with the built-in ValueError. The
classes below cover the remaining failure kinds: misuse of the process
lifecycle, operations a model cannot provide, and contact factory failures.
"""

from typing import Any, Optional


class IllegalStateError(RuntimeError):
    """Operation called in the wrong lifecycle state (e.g. start twice)."""


class UnsupportedOperationError(NotImplementedError):
    """Operation not provided by this arrival model."""


class ContactInstantiationError(RuntimeError):
    """A contact factory failed to create a contact.

    Attributes:
        factory: The factory that raised.
    """

    def __init__(self, factory: Any, message: Optional[str] = None) -> None:
        self.factory = factory
        if message is None:
            message = f"Contact factory {factory!r} could not create a contact"
        super().__init__(message)
