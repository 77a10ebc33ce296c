"""extinction_fitting public API."""
from .inputs import Observations
from .design import GroupSet, GroupedDesign, build_design
from .models import extinction_curve, extinction_mean, simulate_observations
from .objectives import Objective, build_objective
from .multistart import MultiStartConfig, MultiStartResult, run_multistart
from .delta import (
    Coefficient,
    Estimate,
    EstimateTable,
    ExpCoefficient,
    ExpDispersion,
    FunctionTransform,
    covariance_from_hessian,
    delta_method,
)
from .run import Band, EstimationRun, MethodComparison
from .fitting import compare_methods, fit
from .bayes import HierarchicalSpec, PosteriorFit, SamplerConfig, sample_hierarchical
from .errors import (
    ChainDisagreement,
    FitFailure,
    InvalidInput,
    MultimodalityWarning,
    NonInvertibleHessian,
    ObjectiveEvaluationFailure,
    OptimizerNonConvergence,
    SamplerDivergence,
)

__all__ = [
    "Observations",
    "GroupSet",
    "GroupedDesign",
    "build_design",
    "extinction_curve",
    "extinction_mean",
    "simulate_observations",
    "Objective",
    "build_objective",
    "MultiStartConfig",
    "MultiStartResult",
    "run_multistart",
    "Coefficient",
    "Estimate",
    "EstimateTable",
    "ExpCoefficient",
    "ExpDispersion",
    "FunctionTransform",
    "covariance_from_hessian",
    "delta_method",
    "Band",
    "EstimationRun",
    "MethodComparison",
    "compare_methods",
    "fit",
    "HierarchicalSpec",
    "PosteriorFit",
    "SamplerConfig",
    "sample_hierarchical",
    "ChainDisagreement",
    "FitFailure",
    "InvalidInput",
    "MultimodalityWarning",
    "NonInvertibleHessian",
    "ObjectiveEvaluationFailure",
    "OptimizerNonConvergence",
    "SamplerDivergence",
]
