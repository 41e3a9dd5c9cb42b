"""In-memory tabular data set with variable and instance uses."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Sequence

import numpy as np
import pandas as pd
from sklearn.preprocessing import LabelEncoder

from ..core.descriptives import Descriptives
from ..core.errors import EmptyPartition, InvalidConfiguration, ShapeMismatch
from ..core.types import SCALAR, Array, Batch, parse_enum
from .utils import minibatch_indices, split_indices


class VariableUse(Enum):
    INPUT = "Input"
    TARGET = "Target"
    UNUSED = "Unused"


class InstanceUse(Enum):
    TRAINING = "Training"
    SELECTION = "Selection"
    TESTING = "Testing"
    UNUSED = "Unused"


class DataSet:
    """A numeric matrix whose columns are variables and rows are instances.

    ``version`` increases every time a variable or instance use changes so
    that consumers can invalidate anything derived from the partitions.
    """

    def __init__(
        self,
        data,
        variable_names: Sequence[str] | None = None,
        variable_uses: Sequence[VariableUse | str] | None = None,
        instance_uses: Sequence[InstanceUse | str] | None = None,
    ) -> None:
        data = np.asarray(data, dtype=SCALAR)
        if data.ndim != 2:
            raise ShapeMismatch(f"DataSet: expected a [instances, variables] matrix, got {data.shape}")
        self.data = data
        rows, columns = data.shape
        self.variable_names = list(variable_names) if variable_names else [f"variable_{i + 1}" for i in range(columns)]
        if len(self.variable_names) != columns:
            raise ShapeMismatch(f"DataSet: {len(self.variable_names)} names for {columns} variables")
        if variable_uses is None:
            variable_uses = [VariableUse.INPUT] * (columns - 1) + [VariableUse.TARGET] if columns else []
        self._variable_uses = [parse_enum(VariableUse, use) for use in variable_uses]
        if len(self._variable_uses) != columns:
            raise ShapeMismatch(f"DataSet: {len(self._variable_uses)} uses for {columns} variables")
        if instance_uses is None:
            instance_uses = [InstanceUse.TRAINING] * rows
        self._instance_uses = np.array([parse_enum(InstanceUse, use) for use in instance_uses], dtype=object)
        if self._instance_uses.size != rows:
            raise ShapeMismatch(f"DataSet: {self._instance_uses.size} instance uses for {rows} instances")
        self.version = 0

    # ------------------------------------------------------------------
    # Construction

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        targets: Sequence[str] | str | None = None,
        unused: Sequence[str] = (),
    ) -> "DataSet":
        """Build a data set from a DataFrame.

        The last column is the target unless ``targets`` names others.
        Non-numeric inputs are one-hot encoded; a non-numeric target becomes
        a 0/1 column for two classes and one column per class otherwise.
        """

        if frame.empty:
            raise EmptyPartition("DataSet.from_frame: the frame has no rows")
        if targets is None:
            targets = [str(frame.columns[-1])]
        elif isinstance(targets, str):
            targets = [targets]
        missing = [name for name in list(targets) + list(unused) if name not in frame.columns]
        if missing:
            raise KeyError(f"Columns not found: {missing}")

        blocks: List[pd.DataFrame] = []
        uses: List[VariableUse] = []
        for column in frame.columns:
            series = frame[column]
            if column in targets:
                use = VariableUse.TARGET
            elif column in unused:
                use = VariableUse.UNUSED
            else:
                use = VariableUse.INPUT
            if pd.api.types.is_numeric_dtype(series):
                block = series.astype(SCALAR).to_frame(str(column))
            elif use is VariableUse.TARGET:
                block = _encode_labels(series)
            else:
                block = pd.get_dummies(series, prefix=str(column), dtype=SCALAR)
            blocks.append(block)
            uses.extend([use] * block.shape[1])
        encoded = pd.concat(blocks, axis=1)
        return cls(encoded.to_numpy(dtype=SCALAR), [str(c) for c in encoded.columns], uses)

    @classmethod
    def from_csv(
        cls,
        path: str | Path,
        delimiter: str = ",",
        has_header: bool = True,
        targets: Sequence[str] | str | None = None,
        unused: Sequence[str] = (),
    ) -> "DataSet":
        frame = pd.read_csv(path, sep=delimiter, header=0 if has_header else None)
        if not has_header:
            frame.columns = [f"variable_{i + 1}" for i in range(frame.shape[1])]
        return cls.from_frame(frame, targets=targets, unused=unused)

    @classmethod
    def from_time_series(
        cls,
        values,
        lags: int,
        steps_ahead: int = 1,
        names: Sequence[str] | None = None,
    ) -> "DataSet":
        """Lagged windows: inputs are ``lags`` past values, targets the value
        ``steps_ahead`` rows later."""

        series = np.asarray(values, dtype=SCALAR)
        if series.ndim == 1:
            series = series.reshape(-1, 1)
        if lags < 1 or steps_ahead < 1:
            raise InvalidConfiguration(f"lags and steps_ahead must be positive, got {lags}, {steps_ahead}")
        count = series.shape[0] - lags - steps_ahead + 1
        if count < 1:
            raise EmptyPartition(f"Time series of {series.shape[0]} rows is too short for {lags} lags")
        names = list(names) if names else [f"variable_{i + 1}" for i in range(series.shape[1])]
        rows = []
        for start in range(count):
            window = series[start : start + lags]
            target = series[start + lags + steps_ahead - 1]
            rows.append(np.concatenate([window.reshape(-1), target]))
        input_names = [f"{name}_lag_{lags - k}" for k in range(lags) for name in names]
        target_names = [f"{name}_ahead_{steps_ahead}" for name in names]
        uses = [VariableUse.INPUT] * len(input_names) + [VariableUse.TARGET] * len(target_names)
        return cls(np.vstack(rows), input_names + target_names, uses)

    # ------------------------------------------------------------------
    # Variables

    @property
    def variables_number(self) -> int:
        return int(self.data.shape[1])

    @property
    def instances_number(self) -> int:
        return int(self.data.shape[0])

    @property
    def variable_uses(self) -> List[VariableUse]:
        return list(self._variable_uses)

    def _variable_index(self, variable: int | str) -> int:
        if isinstance(variable, str):
            try:
                return self.variable_names.index(variable)
            except ValueError as exc:
                raise KeyError(f"Unknown variable {variable!r}") from exc
        if not 0 <= variable < self.variables_number:
            raise ShapeMismatch(f"Variable index {variable} out of range")
        return int(variable)

    def set_variable_use(self, variable: int | str, use: VariableUse | str) -> None:
        self._variable_uses[self._variable_index(variable)] = parse_enum(VariableUse, use)
        self.version += 1

    def set_variable_uses(self, uses: Sequence[VariableUse | str]) -> None:
        if len(uses) != self.variables_number:
            raise ShapeMismatch(f"DataSet: {len(uses)} uses for {self.variables_number} variables")
        self._variable_uses = [parse_enum(VariableUse, use) for use in uses]
        self.version += 1

    def _indices(self, use: VariableUse) -> List[int]:
        return [idx for idx, current in enumerate(self._variable_uses) if current is use]

    def input_indices(self) -> List[int]:
        return self._indices(VariableUse.INPUT)

    def target_indices(self) -> List[int]:
        return self._indices(VariableUse.TARGET)

    def candidate_input_indices(self) -> List[int]:
        """Variables that may serve as inputs: every non-target column."""

        return [idx for idx, use in enumerate(self._variable_uses) if use is not VariableUse.TARGET]

    def set_input_indices(self, indices: Sequence[int]) -> None:
        """Make exactly ``indices`` the inputs; other non-target columns become unused."""

        chosen = {int(i) for i in indices}
        for idx in chosen:
            if self._variable_uses[idx] is VariableUse.TARGET:
                raise InvalidConfiguration(f"Variable {self.variable_names[idx]!r} is a target")
        for idx in self.candidate_input_indices():
            self._variable_uses[idx] = VariableUse.INPUT if idx in chosen else VariableUse.UNUSED
        self.version += 1

    @property
    def inputs_number(self) -> int:
        return len(self.input_indices())

    @property
    def targets_number(self) -> int:
        return len(self.target_indices())

    def input_names(self) -> List[str]:
        return [self.variable_names[i] for i in self.input_indices()]

    def target_names(self) -> List[str]:
        return [self.variable_names[i] for i in self.target_indices()]

    # ------------------------------------------------------------------
    # Instances

    @property
    def instance_uses(self) -> List[InstanceUse]:
        return list(self._instance_uses)

    def set_instance_uses(self, uses: Sequence[InstanceUse | str]) -> None:
        if len(uses) != self.instances_number:
            raise ShapeMismatch(f"DataSet: {len(uses)} uses for {self.instances_number} instances")
        self._instance_uses = np.array([parse_enum(InstanceUse, use) for use in uses], dtype=object)
        self.version += 1

    def split_instances(
        self,
        training: float = 0.6,
        selection: float = 0.2,
        testing: float = 0.2,
        seed: int = 0,
    ) -> None:
        """Randomly assign rows to partitions; ratios must sum to one."""

        splits = split_indices(
            self.instances_number, training=training, selection=selection, testing=testing, seed=seed
        )
        uses = np.empty(self.instances_number, dtype=object)
        uses[splits.training] = InstanceUse.TRAINING
        uses[splits.selection] = InstanceUse.SELECTION
        uses[splits.testing] = InstanceUse.TESTING
        self._instance_uses = uses
        self.version += 1

    def instance_indices(self, use: InstanceUse | str) -> Array:
        use = parse_enum(InstanceUse, use)
        return np.flatnonzero(self._instance_uses == use)

    def partition_size(self, use: InstanceUse | str) -> int:
        return int(self.instance_indices(use).size)

    def partition_sizes(self) -> Dict[str, int]:
        return {use.value: self.partition_size(use) for use in InstanceUse}

    def _rows(self, use: InstanceUse | str) -> Array:
        rows = self.instance_indices(use)
        if rows.size == 0:
            raise EmptyPartition(f"DataSet: the {parse_enum(InstanceUse, use).value} partition is empty")
        return rows

    def inputs(self, use: InstanceUse | str = InstanceUse.TRAINING) -> Array:
        return self.data[np.ix_(self._rows(use), self.input_indices())]

    def targets(self, use: InstanceUse | str = InstanceUse.TRAINING) -> Array:
        return self.data[np.ix_(self._rows(use), self.target_indices())]

    def batch(self, use: InstanceUse | str = InstanceUse.TRAINING) -> Batch:
        rows = self._rows(use)
        return self.batch_from_rows(rows)

    def batch_from_rows(self, rows: Sequence[int]) -> Batch:
        rows = np.asarray(rows, dtype=int)
        return Batch(
            inputs=self.data[np.ix_(rows, self.input_indices())],
            targets=self.data[np.ix_(rows, self.target_indices())],
        )

    def batches(
        self,
        use: InstanceUse | str,
        batch_size: int,
        rng: np.random.Generator | None = None,
    ) -> Iterator[Batch]:
        """Mini-batches of a partition, shuffled when ``rng`` is given."""

        for rows in minibatch_indices(self._rows(use), batch_size, rng):
            yield self.batch_from_rows(rows)

    # ------------------------------------------------------------------
    # Statistics

    def _used_rows(self) -> Array:
        rows = np.flatnonzero(self._instance_uses != InstanceUse.UNUSED)
        if rows.size == 0:
            raise EmptyPartition("DataSet: every instance is unused")
        return rows

    def variable_descriptives(self) -> Descriptives:
        return Descriptives.of(self.data[self._used_rows()])

    def input_descriptives(self) -> Descriptives:
        return self.variable_descriptives().subset(self.input_indices())

    def target_descriptives(self) -> Descriptives:
        return self.variable_descriptives().subset(self.target_indices())

    def target_sum_squares(self, use: InstanceUse | str = InstanceUse.TRAINING) -> float:
        """``sum((t - mean(t))^2)`` over a partition."""

        targets = self.targets(use)
        return float(np.sum((targets - targets.mean(axis=0)) ** 2))

    def class_counts(self, use: InstanceUse | str = InstanceUse.TRAINING) -> Array:
        """Instances per class; one target column counts negatives then positives."""

        targets = self.targets(use)
        if targets.shape[1] == 1:
            positives = int(np.sum(targets[:, 0] >= 0.5))
            return np.array([targets.shape[0] - positives, positives])
        return np.bincount(np.argmax(targets, axis=1), minlength=targets.shape[1])

    def positives_negatives(self, use: InstanceUse | str = InstanceUse.TRAINING) -> tuple[int, int]:
        if self.targets_number != 1:
            raise InvalidConfiguration("Positive/negative counts need a single binary target")
        negatives, positives = self.class_counts(use)
        return int(positives), int(negatives)

    def describe(self) -> Dict[str, object]:
        return {
            "instances": self.instances_number,
            "variables": self.variables_number,
            "inputs": self.input_names(),
            "targets": self.target_names(),
            "partitions": self.partition_sizes(),
        }


def _encode_labels(series: pd.Series) -> pd.DataFrame:
    encoder = LabelEncoder()
    codes = encoder.fit_transform(series.astype(str))
    classes = [str(c) for c in encoder.classes_]
    name = str(series.name)
    if len(classes) == 2:
        return pd.DataFrame({name: codes.astype(SCALAR)}, index=series.index)
    one_hot = np.eye(len(classes), dtype=SCALAR)[codes]
    return pd.DataFrame(one_hot, columns=[f"{name}_{c}" for c in classes], index=series.index)


__all__ = ["DataSet", "InstanceUse", "VariableUse"]
