from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

import numpy as np

from .errors import InvalidInput


@dataclass(frozen=True)
class Observations:
    """Paired (response, predictor, group) observations in input order.

    response  : fractional interception, strictly inside (0, 1)
    predictor : non-negative continuous predictor (e.g. leaf area index)
    group     : arbitrary hashable label
    """

    response: np.ndarray
    predictor: np.ndarray
    group: np.ndarray

    def __post_init__(self) -> None:
        _validate(self.response, self.predictor, self.group)

    def __len__(self) -> int:
        return int(self.response.shape[0])

    @staticmethod
    def from_arrays(response: Any, predictor: Any, group: Any) -> "Observations":
        """Create Observations from three aligned sequences."""
        y = _as_float_vector(response, "response")
        x = _as_float_vector(predictor, "predictor")
        g = _as_label_vector(group)
        return Observations(response=y, predictor=x, group=g)

    @staticmethod
    def from_columns(
        table: Mapping[str, Any],
        *,
        response: str = "response",
        predictor: str = "predictor",
        group: str = "group",
    ) -> "Observations":
        """Create Observations from a column mapping (dict, DataFrame, ...)."""
        missing = [c for c in (response, predictor, group) if c not in table]
        if missing:
            raise InvalidInput(f"Missing columns: {missing}")
        return Observations.from_arrays(table[response], table[predictor], table[group])

    @staticmethod
    def from_records(rows: Iterable[Any]) -> "Observations":
        """Create Observations from (response, predictor, group) tuples or mappings."""
        ys, xs, gs = [], [], []
        for i, row in enumerate(rows):
            if isinstance(row, Mapping):
                try:
                    ys.append(row["response"])
                    xs.append(row["predictor"])
                    gs.append(row["group"])
                except KeyError as e:
                    raise InvalidInput(f"Record {i} is missing key {e.args[0]!r}.") from e
            else:
                try:
                    y, x, g = row
                except (TypeError, ValueError) as e:
                    raise InvalidInput(
                        f"Record {i} must be (response, predictor, group); got {row!r}."
                    ) from e
                ys.append(y)
                xs.append(x)
                gs.append(g)
        return Observations.from_arrays(ys, xs, gs)

    def subset(self, groups: Sequence[Any]) -> "Observations":
        """Return the observations belonging to `groups`, preserving order."""
        wanted = set(groups)
        mask = np.array([g in wanted for g in self.group.tolist()], dtype=bool)
        if not np.any(mask):
            raise InvalidInput(f"No observations for groups {list(groups)!r}.")
        return Observations(
            response=self.response[mask],
            predictor=self.predictor[mask],
            group=self.group[mask],
        )


def _as_float_vector(values: Any, name: str) -> np.ndarray:
    try:
        arr = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{name} must be numeric.") from e
    if arr.ndim != 1:
        arr = arr.reshape((-1,))
    return arr


def _as_label_vector(values: Any) -> np.ndarray:
    labels = list(values.tolist() if isinstance(values, np.ndarray) else values)
    out = np.empty((len(labels),), dtype=object)
    out[:] = labels
    return out


def _validate(y: np.ndarray, x: np.ndarray, g: np.ndarray) -> None:
    """Raise InvalidInput if the observation arrays are unusable."""
    n = int(y.shape[0])
    if n < 1:
        raise InvalidInput("At least one observation is required.")
    if x.shape != (n,) or g.shape != (n,):
        raise InvalidInput(
            f"response, predictor and group must have equal length; "
            f"got {n}, {x.shape[0]}, {g.shape[0]}."
        )
    if not np.all(np.isfinite(y)):
        raise InvalidInput("response contains non-finite values.")
    if not np.all(np.isfinite(x)):
        raise InvalidInput("predictor contains non-finite values.")

    bad_x = np.flatnonzero(x < 0.0)
    if bad_x.size:
        i = int(bad_x[0])
        raise InvalidInput(f"predictor must be >= 0; observation {i} has {x[i]!r}.")

    # Boundary responses are rejected rather than clamped: a clamp would bias
    # the Beta likelihood towards the edge.
    bad_y = np.flatnonzero((y <= 0.0) | (y >= 1.0))
    if bad_y.size:
        i = int(bad_y[0])
        raise InvalidInput(
            f"response must lie strictly inside (0, 1); observation {i} has {y[i]!r}."
        )

    if any(label is None for label in g.tolist()):
        raise InvalidInput("group labels must not be None.")
