from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Literal, Sequence, Tuple

import numpy as np

from .errors import InvalidInput
from .inputs import Observations

GroupOrder = Literal["sorted", "first_seen"]


class GroupSet:
    """Ordered set of group labels with a dense 0-based index.

    The index is fixed at construction and shared by the design matrix, the
    optimiser's parameter vector and the Bayesian group indexing.
    """

    def __init__(self, labels: Iterable[Any]):
        labels = tuple(labels)
        if not labels:
            raise InvalidInput("GroupSet needs at least one label.")
        lookup: Dict[Any, int] = {}
        for i, label in enumerate(labels):
            if label in lookup:
                raise InvalidInput(f"Duplicate group label {label!r}.")
            lookup[label] = i
        self._labels = labels
        self._lookup = lookup

    @staticmethod
    def from_labels(labels: Iterable[Any], order: GroupOrder = "sorted") -> "GroupSet":
        """Build a GroupSet from (possibly repeated) observation labels."""
        seen: Dict[Any, None] = {}
        for label in labels:
            seen.setdefault(label, None)
        unique = list(seen.keys())
        if order == "sorted":
            try:
                unique.sort()
            except TypeError:
                # Mixed label types: order by type name, then text.
                unique.sort(key=lambda label: (type(label).__name__, str(label)))
        elif order != "first_seen":
            raise ValueError(f"Unknown group order {order!r}; use 'sorted' or 'first_seen'.")
        return GroupSet(unique)

    @property
    def labels(self) -> Tuple[Any, ...]:
        return self._labels

    def index(self, label: Any) -> int:
        try:
            return self._lookup[label]
        except KeyError as e:
            raise InvalidInput(
                f"Unknown group {label!r}. Known groups: {self._labels!r}"
            ) from e

    def indices(self, labels: Iterable[Any]) -> np.ndarray:
        return np.asarray([self.index(label) for label in labels], dtype=np.intp)

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self):
        return iter(self._labels)

    def __contains__(self, label: Any) -> bool:
        return label in self._lookup

    def __eq__(self, other: object) -> bool:
        return isinstance(other, GroupSet) and self._labels == other._labels

    def __hash__(self) -> int:
        return hash(self._labels)

    def __repr__(self) -> str:
        return f"GroupSet({list(self._labels)!r})"


@dataclass(frozen=True)
class GroupedDesign:
    """Per-group column design for the saturating-exponential mean.

    matrix[i, j] == predictor[i] when observation i belongs to group j, else 0.
    """

    groups: GroupSet
    group_index: np.ndarray  # (N,) int
    predictor: np.ndarray  # (N,)
    response: np.ndarray  # (N,)
    matrix: np.ndarray  # (N, G)

    @property
    def n_obs(self) -> int:
        return int(self.predictor.shape[0])

    @property
    def n_groups(self) -> int:
        return len(self.groups)

    def rows_for(self, groups: Sequence[Any], predictors: Any) -> "GroupedDesign":
        """Design block for new (group, predictor) pairs using this GroupSet.

        The returned design has a NaN response column; it is meant for
        prediction only.
        """
        x = np.asarray(predictors, dtype=float).reshape((-1,))
        labels = list(groups)
        if len(labels) != x.shape[0]:
            raise InvalidInput(
                f"groups and predictors must have equal length; got {len(labels)} and {x.shape[0]}."
            )
        if not np.all(np.isfinite(x)) or np.any(x < 0.0):
            raise InvalidInput("predictors must be finite and >= 0.")
        idx = self.groups.indices(labels)
        return GroupedDesign(
            groups=self.groups,
            group_index=idx,
            predictor=x,
            response=np.full(x.shape, np.nan),
            matrix=_design_matrix(idx, x, len(self.groups)),
        )


def _design_matrix(group_index: np.ndarray, predictor: np.ndarray, n_groups: int) -> np.ndarray:
    n = int(predictor.shape[0])
    mat = np.zeros((n, n_groups), dtype=float)
    mat[np.arange(n), group_index] = predictor
    mat.setflags(write=False)
    return mat


def build_design(observations: Observations, *, group_order: GroupOrder = "sorted") -> GroupedDesign:
    """Build the GroupSet and the N x G design matrix for `observations`."""
    if not isinstance(observations, Observations):
        raise TypeError("build_design expects an Observations instance.")
    labels = observations.group.tolist()
    groups = GroupSet.from_labels(labels, order=group_order)
    idx = groups.indices(labels)
    idx.setflags(write=False)

    x = np.array(observations.predictor, dtype=float)
    y = np.array(observations.response, dtype=float)
    x.setflags(write=False)
    y.setflags(write=False)

    return GroupedDesign(
        groups=groups,
        group_index=idx,
        predictor=x,
        response=y,
        matrix=_design_matrix(idx, x, len(groups)),
    )
