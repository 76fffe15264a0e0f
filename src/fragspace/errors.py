from __future__ import annotations


class FragSpaceError(Exception):
    """Base class of all errors raised by fragspace."""


class ConfigurationError(FragSpaceError, ValueError):
    """Missing or inconsistent run configuration; fatal before any task starts."""


class GraphStructureError(FragSpaceError):
    """A graph operation would break the tree/AP-exclusivity invariants."""


class GraphBuildError(FragSpaceError):
    pass


class AssemblyError(FragSpaceError):
    """A graph could not be converted into a chemical structure."""


class GeometryError(AssemblyError):
    """No 3-D conformer could be embedded for an otherwise valid structure."""


class EvaluationError(FragSpaceError):
    pass


class DescriptorError(EvaluationError):
    pass


class DescriptorResolutionError(DescriptorError, KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Variable '{name}' cannot be resolved")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class UnsupportedDescriptorError(DescriptorError):
    pass


class ExternalFitnessError(EvaluationError):
    pass


class TaskCancelled(FragSpaceError):
    pass


class TaskBatchError(FragSpaceError):
    """A batch of tasks failed; completed results are kept on the exception."""

    def __init__(self, message: str, results=None, failures=None) -> None:
        super().__init__(message)
        self.results = list(results or [])
        self.failures = list(failures or [])
