"""Arrival counts collected during a replication."""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from ccarrivals.core.contact import Contact


@dataclass
class ArrivalCounter:
    """Counts new contacts per (type, period).

    Register ``count`` as a new-contact listener of one or more arrival
    processes. Periods are looked up from the arrival time of each contact
    through ``periods`` (PeriodLayout or PeriodSchedule).

    Attributes:
        periods: Period oracle used to classify arrivals.
        num_types: Number of contact types, or None to grow on demand.
        counts: Mapping (type_id, period) -> count.
    """

    periods: object
    num_types: Optional[int] = None
    counts: Dict[Tuple[int, int], int] = field(default_factory=dict)

    def count(self, contact: Contact) -> None:
        """Listener callback recording one contact."""
        if self.num_types is not None and not 0 <= contact.type_id < self.num_types:
            raise ValueError(f"Contact type {contact.type_id} outside [0, {self.num_types})")
        key = (contact.type_id, self.periods.period_of(contact.arrival_time))
        self.counts[key] = self.counts.get(key, 0) + 1

    __call__ = count

    def init(self) -> None:
        """Clear the counts before a new replication."""
        self.counts.clear()

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def _types(self):
        if self.num_types is not None:
            return list(range(self.num_types))
        return sorted({t for t, _ in self.counts}) or [0]

    def matrix(self) -> np.ndarray:
        """Types x periods count matrix, with a totals row when several types exist."""
        types = self._types()
        n_periods = self.periods.period_count()
        m = np.zeros((len(types), n_periods), dtype=int)
        for (t, p), n in self.counts.items():
            m[types.index(t), p] = n
        if len(types) > 1:
            m = np.vstack([m, m.sum(axis=0)])
        return m

    def main_period_counts(self, type_id: Optional[int] = None) -> np.ndarray:
        """Counts of the main periods for one type, or all types together."""
        m = self.matrix()
        row = m[-1] if type_id is None else m[self._types().index(type_id)]
        return row[1:-1]

    def as_frame(self) -> pd.DataFrame:
        """Counts as a DataFrame indexed by type (plus "all") with period columns."""
        types = self._types()
        index = [str(t) for t in types] + (["all"] if len(types) > 1 else [])
        return pd.DataFrame(
            self.matrix(),
            index=pd.Index(index, name="type"),
            columns=pd.Index(range(self.periods.period_count()), name="period"),
        )
