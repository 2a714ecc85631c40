"""
Estimation modes and model configuration.
"""

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict


class EstimationMode(str, Enum):
    """How a group of parameters is handled by a gene model."""
    INDEPENDENT = "independent"
    SHRUNKEN = "shrunken"
    SHARED = "shared"
    FIXED = "fixed"

    @property
    def is_local(self) -> bool:
        """True if the gene model moves the parameters itself."""
        return self in (EstimationMode.INDEPENDENT, EstimationMode.SHRUNKEN)


# Truncation used for the base mixture, and upper bound of the site mixture,
# when the number of components is left to its default (-1)
DEFAULT_MAX_NCAT = 100

_MODE_FIELDS = ("bl_mode", "nuc_mode", "base_mode", "omega_mode")


@dataclass
class ModelConfig:
    """
    Configuration of a two-level Dirichlet-process mutation-selection model.

    Attributes
    ----------
    ncat : int
        Truncation of the site mixture (-1 for min(n_sites, 100))
    basencat : int
        Truncation of the base mixture (-1 for 100)
    bl_mode, nuc_mode, base_mode, omega_mode : EstimationMode
        Handling of branch lengths, nucleotide rates, base mixture and omega
    n_param_reps : int
        Parameter sweeps per substitution-mapping update
    n_mixture_reps : int
        Site-mixture cycles per parameter sweep
    n_base_reps : int
        Base-mixture cycles per parameter sweep
    n_base_component_reps : int
        Rounds of base center/concentration moves per base cycle
    label_switching_factor : float
        Label-switching proposals per unit of the concentration parameter
    omega_hypermean, omega_hyperinvshape : float
        Gamma prior on omega (mean, inverse shape)
    base_hyperinvconc : float
        Inverse concentration of the Dirichlet prior on base centers
    base_conc_hypermean, base_conc_hyperinvshape : float
        Gamma prior on base concentrations (mean, inverse shape)
    kappa, basekappa : float
        Initial concentrations of the site and base mixtures
    lambda_ : float
        Initial rate of the branch-length prior
    omega : float
        Initial omega
    """

    ncat: int = -1
    basencat: int = -1
    bl_mode: EstimationMode = EstimationMode.INDEPENDENT
    nuc_mode: EstimationMode = EstimationMode.INDEPENDENT
    base_mode: EstimationMode = EstimationMode.INDEPENDENT
    omega_mode: EstimationMode = EstimationMode.INDEPENDENT
    n_param_reps: int = 30
    n_mixture_reps: int = 3
    n_base_reps: int = 3
    n_base_component_reps: int = 10
    label_switching_factor: float = 5.0
    omega_hypermean: float = 1.0
    omega_hyperinvshape: float = 1.0
    base_hyperinvconc: float = 1.0 / 20
    base_conc_hypermean: float = 20.0
    base_conc_hyperinvshape: float = 1.0
    kappa: float = 1.0
    basekappa: float = 1.0
    lambda_: float = 10.0
    omega: float = 1.0

    def __post_init__(self):
        for name in _MODE_FIELDS:
            value = getattr(self, name)
            try:
                setattr(self, name, EstimationMode(value))
            except ValueError:
                valid = ", ".join(m.value for m in EstimationMode)
                raise ValueError(f"Invalid {name} '{value}'; expected one of: {valid}")

        for name in ("ncat", "basencat"):
            value = getattr(self, name)
            if value != -1 and value < 1:
                raise ValueError(f"{name} must be -1 or a positive integer, got {value}")

        for name in ("n_param_reps", "n_mixture_reps", "n_base_reps", "n_base_component_reps"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")

        for name in ("label_switching_factor",):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")

        for name in ("omega_hypermean", "omega_hyperinvshape", "base_hyperinvconc",
                     "base_conc_hypermean", "base_conc_hyperinvshape",
                     "kappa", "basekappa", "lambda_", "omega"):
            if not getattr(self, name) > 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

    def resolve_ncat(self, n_sites: int) -> int:
        if self.ncat == -1:
            return min(n_sites, DEFAULT_MAX_NCAT)
        return self.ncat

    def resolve_basencat(self) -> int:
        if self.basencat == -1:
            return DEFAULT_MAX_NCAT
        return self.basencat

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in _MODE_FIELDS:
            data[name] = getattr(self, name).value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)
