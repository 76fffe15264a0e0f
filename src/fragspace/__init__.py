"""fragspace: combinatorial molecule design from building blocks.

Candidate molecular graphs are grown from a library of scaffolds, fragments,
capping groups and ring-closing attractors, assembled into RDKit molecules and
scored either by descriptor expressions or by an external scoring program.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
