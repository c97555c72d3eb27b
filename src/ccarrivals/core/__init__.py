"""Core primitives: periods, scheduling, busyness, contacts and errors."""

from ccarrivals.core.busyness import Busyness, BusynessState
from ccarrivals.core.contact import (
    COPYABLE_FIELDS,
    Contact,
    RandomTypeContactFactory,
    SimpleContactFactory,
)
from ccarrivals.core.entities import CorrelationFit, ProcessState, ShapeEstimator
from ccarrivals.core.errors import (
    ContactInstantiationError,
    IllegalStateError,
    UnsupportedOperationError,
)
from ccarrivals.core.periods import PeriodLayout, PeriodSchedule
from ccarrivals.core.scheduler import SimEvent
from ccarrivals.core.streams import StreamSet

__all__ = [
    "Busyness",
    "BusynessState",
    "Contact",
    "COPYABLE_FIELDS",
    "SimpleContactFactory",
    "RandomTypeContactFactory",
    "CorrelationFit",
    "ProcessState",
    "ShapeEstimator",
    "ContactInstantiationError",
    "IllegalStateError",
    "UnsupportedOperationError",
    "PeriodLayout",
    "PeriodSchedule",
    "SimEvent",
    "StreamSet",
]
