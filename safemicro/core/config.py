# safemicro/core/config.py

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

from .errors import ParameterError

NOISE_METHODS = ("additive", "correlated")
RECODE_TYPES = ("interval", "group", "top", "bottom")


@dataclass
class PipelineConfig:
    """
    Parameters of one pipeline run.

    Attributes
        key_vars            categorical key variables (quasi-identifiers)
        num_vars            numeric key variables (microaggregation, noise)
        weight_var          sampling weight column, if any
        pram_vars           categorical variables to post-randomise
        strata_var          stratification column for microaggregation / PRAM
        k                   k-anonymity target of local suppression
        microaggregation    run MDAV on the numeric key variables
        group_size          microaggregation group size
        noise_method        "additive", "correlated" or None to skip noise
        noise_magnitude     noise standard deviation in percent of each sd
        pram_pd             minimum diagonal of generated PRAM matrices
        pram_alpha          blend of the invariant matrix with the identity
        recodes             list of recode steps, see `pipeline.apply_recode`
        importance          key variable -> rank (1 = most important)
        use_loglinear       add model-based risk to every risk snapshot
        seed                seed for all randomised stages
    """

    key_vars: List[str]
    num_vars: List[str] = field(default_factory=list)
    weight_var: Optional[str] = None
    pram_vars: List[str] = field(default_factory=list)
    strata_var: Optional[str] = None
    k: int = 3
    microaggregation: bool = True
    group_size: int = 3
    noise_method: Optional[str] = "correlated"
    noise_magnitude: float = 20.0
    pram_pd: float = 0.8
    pram_alpha: float = 0.5
    recodes: List[Dict[str, Any]] = field(default_factory=list)
    importance: Optional[Dict[str, int]] = None
    use_loglinear: bool = False
    seed: Optional[int] = None

    def validate(self) -> "PipelineConfig":
        if not self.key_vars:
            raise ParameterError("key_vars must not be empty")
        if int(self.k) != self.k or self.k < 1:
            raise ParameterError(f"k must be an integer >= 1, got {self.k}")
        if int(self.group_size) != self.group_size or self.group_size < 2:
            raise ParameterError(f"group_size must be an integer >= 2, got {self.group_size}")
        if self.noise_method is not None and self.noise_method not in NOISE_METHODS:
            raise ParameterError(
                f"Unknown noise method '{self.noise_method}', expected one of {NOISE_METHODS}"
            )
        if self.noise_magnitude < 0:
            raise ParameterError("noise_magnitude must be >= 0")
        if not 0 < self.pram_pd <= 1:
            raise ParameterError("pram_pd must be in (0, 1]")
        if not 0 <= self.pram_alpha <= 1:
            raise ParameterError("pram_alpha must be in [0, 1]")
        for step in self.recodes:
            if "column" not in step or "type" not in step:
                raise ParameterError(f"Recode step needs 'column' and 'type': {step}")
            if step["type"] not in RECODE_TYPES:
                raise ParameterError(
                    f"Unknown recode type '{step['type']}', expected one of {RECODE_TYPES}"
                )
        return self

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "PipelineConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ParameterError(f"Unknown configuration keys: {unknown}")
        if "key_vars" not in mapping:
            raise ParameterError("key_vars is required")
        return cls(**dict(mapping))
