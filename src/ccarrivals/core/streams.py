"""Random stream bundle for one replication."""

from dataclasses import dataclass, field

import numpy as np


@dataclass
class StreamSet:
    """Separate numpy generators for each stochastic element.

    Sharing a generator between two processes makes their draws
    interleave in call order, which is how common random numbers are
    obtained across compared scenarios.

    Attributes:
        random_seed: Master seed for reproducibility.
        rng_arrivals: Inter-arrival times and uniform arrival instants.
        rng_rates: Latent rates and counts drawn at init.
        rng_busyness: Day-level busyness factor.
        rng_contacts: Contact type selection.
        rng_estimation: Monte Carlo draws of the parameter estimators.
    """

    random_seed: int = 42
    rng_arrivals: np.random.Generator = field(init=False, repr=False)
    rng_rates: np.random.Generator = field(init=False, repr=False)
    rng_busyness: np.random.Generator = field(init=False, repr=False)
    rng_contacts: np.random.Generator = field(init=False, repr=False)
    rng_estimation: np.random.Generator = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize one generator per stochastic element."""
        self.rng_arrivals = np.random.default_rng(self.random_seed)
        self.rng_rates = np.random.default_rng(self.random_seed + 1)
        self.rng_busyness = np.random.default_rng(self.random_seed + 2)
        self.rng_contacts = np.random.default_rng(self.random_seed + 3)
        self.rng_estimation = np.random.default_rng(self.random_seed + 4)

    def clone_with_seed(self, new_seed: int) -> "StreamSet":
        """Fresh stream set for another replication.

        Args:
            new_seed: The new master seed.

        Returns:
            A new StreamSet with independent generators.
        """
        return StreamSet(random_seed=new_seed)
