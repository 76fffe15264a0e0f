from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..errors import ConfigurationError

BondTypeName = Literal["NONE", "UNDEFINED", "ANY", "SINGLE", "DOUBLE", "TRIPLE"]


class FragmentSpaceConfig(BaseModel):
    library: str = Field(..., description="YAML/JSON file with the building-block libraries")
    compatibility: dict[str, list[str]] = Field(
        default_factory=dict,
        description="APClass -> APClasses it may bond to. Empty means all APs are compatible.",
    )
    ring_closure_compatibility: dict[str, list[str]] = Field(
        default_factory=dict,
        description="APClass -> APClasses whose RCAs may close a ring together",
    )
    capping: dict[str, str] = Field(
        default_factory=dict, description="APClass -> APClass of the capping group to use"
    )
    bond_types: dict[str, BondTypeName] = Field(
        default_factory=dict, description="APClass rule -> bond type (default SINGLE)"
    )
    forbidden_ends: list[str] = Field(
        default_factory=list, description="APClasses that must not be left free"
    )
    enforce_symmetry: bool = Field(
        False, description="Symmetric APs always receive the same building block"
    )


class Constraints(BaseModel):
    max_heavy_atoms: int | None = Field(None, ge=1, description="Maximum heavy atom count")
    max_mw: float | None = Field(None, gt=0.0, description="Maximum molecular weight")
    max_rotatable_bonds: int | None = Field(None, ge=0, description="Maximum rotatable bonds")
    allowed_elements: list[str] | None = Field(
        default=None, description="Permitted chemical elements (None: any)"
    )


class RingClosureConfig(BaseModel):
    enabled: bool = True
    min_ring_size: int = Field(5, ge=3)
    max_ring_size: int = Field(7, ge=3)
    max_alternatives: int | None = Field(
        None, ge=1, description="Keep at most this many cyclic alternatives per graph"
    )

    @model_validator(mode="after")
    def ordered_sizes(self) -> RingClosureConfig:
        if self.min_ring_size > self.max_ring_size:
            raise ValueError("min_ring_size must not exceed max_ring_size")
        return self


class VariableConfig(BaseModel):
    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    smarts: str = Field(..., description="Pattern selecting the atoms/bonds of interest")


class DescriptorConfig(BaseModel):
    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$", description="Short name")
    implementation: str = Field(..., description="Registered descriptor (e.g. MolLogP)")
    result_index: int = Field(0, ge=0, description="Entry to use for array-valued results")
    variables: list[VariableConfig] = Field(default_factory=list)
    params: dict[str, str | float | int | bool] = Field(default_factory=dict)

    def variable_names(self) -> list[str]:
        if not self.variables:
            return [self.name]
        return [v.name for v in self.variables]


class ExternalFitnessConfig(BaseModel):
    interpreter: str = Field("bash", description="Interpreter running the scoring program")
    program: str = Field(..., description="Scoring script/program path")
    timeout: float | None = Field(None, gt=0.0, description="Seconds before the child is killed")


class FitnessConfig(BaseModel):
    expression: str | None = Field(None, description="Arithmetic fitness expression")
    descriptors: list[DescriptorConfig] = Field(default_factory=list)
    external: ExternalFitnessConfig | None = None
    make_pictures: bool = False
    fitness_required: bool = True
    align_3d: bool = True
    uid_file: str | None = None
    skip_duplicates: bool = False

    @property
    def use_external(self) -> bool:
        return self.external is not None

    @model_validator(mode="after")
    def one_provider(self) -> FitnessConfig:
        if self.external is None and not self.expression:
            raise ValueError("fitness requires either 'expression' or 'external'")
        if self.external is not None and self.expression:
            raise ValueError("'expression' and 'external' are mutually exclusive")
        if self.expression:
            # Imported lazily: the expression module has no pydantic dependency
            from ..fitness.expression import Expression

            expr = Expression.parse(self.expression)
            known: set[str] = set()
            for d in self.descriptors:
                known.update(d.variable_names())
            missing = sorted(expr.variables - known)
            if missing:
                raise ValueError(
                    f"expression variables not provided by any descriptor: {missing}"
                )
        return self


class ExplorerConfig(BaseModel):
    max_level: int = Field(2, ge=1, description="Number of layers to grow")
    num_workers: int = Field(1, ge=1)
    batch_size: int = Field(16, ge=1, description="Combinations submitted per batch")
    submit_fitness: bool = True
    termination_timeout: float = Field(30.0, gt=0.0)
    seed: int = 0


class RunConfig(BaseModel):
    fragment_space: FragmentSpaceConfig
    constraints: Constraints = Field(default_factory=Constraints)
    ring_closures: RingClosureConfig = Field(default_factory=RingClosureConfig)
    fitness: FitnessConfig
    explorer: ExplorerConfig = Field(default_factory=ExplorerConfig)
    work_dir: str = Field("artifacts/fse", description="Output and checkpoint directory")

    @field_validator("work_dir")
    @classmethod
    def non_empty_work_dir(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("work_dir must not be empty")
        return v

    def with_base_dir(self, base_dir: str | Path | None) -> RunConfig:
        """Copy whose relative external program path is taken from ``base_dir``."""
        ext = self.fitness.external
        if base_dir is None or ext is None or Path(ext.program).is_absolute():
            return self
        program = str(Path(base_dir) / ext.program)
        fitness = self.fitness.model_copy(
            update={"external": ext.model_copy(update={"program": program})}
        )
        return self.model_copy(update={"fitness": fitness})

    @classmethod
    def json_schema(cls) -> dict:
        return cls.model_json_schema()


def validate_config_payload(payload: dict) -> RunConfig:
    try:
        return RunConfig.model_validate(payload)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
