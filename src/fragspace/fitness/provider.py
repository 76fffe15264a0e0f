from __future__ import annotations

import logging

import numpy as np

from ..chem import rdkit_utils as RU
from .descriptors import Descriptor, build_descriptor
from .expression import Expression

logger = logging.getLogger(__name__)


class FitnessProvider:
    """Computes descriptors on a molecule and combines them with the fitness expression."""

    def __init__(self, descriptors: list[Descriptor], expression: Expression) -> None:
        self.descriptors = list(descriptors)
        self.expression = expression

    @classmethod
    def from_config(cls, cfg) -> FitnessProvider:
        return cls([build_descriptor(d) for d in cfg.descriptors], Expression.parse(cfg.expression))

    def compute_variables(self, mol) -> dict[str, float]:
        """Variable values (averaged over hits); per-hit values are stored as ``<var>_<n>``."""
        variables: dict[str, float] = {}
        for descriptor in self.descriptors:
            for name, values in descriptor.compute(mol).items():
                if not values:
                    continue
                props = {f"{name}_{n}": v for n, v in enumerate(values)}
                value = float(np.mean(values))
                props[name] = value
                RU.set_props(mol, props)
                variables[name] = value
        return variables

    def get_fitness(self, mol) -> float:
        variables = self.compute_variables(mol)
        fitness = self.expression.evaluate(variables)
        logger.debug("Fitness %s from %s", fitness, variables)
        return fitness
