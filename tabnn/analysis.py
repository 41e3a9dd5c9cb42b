"""Post-training analysis of a network against the data set's partitions."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List

import numpy as np
from sklearn.metrics import auc, roc_curve

from .core.errors import EmptyPartition, InvalidConfiguration, ShapeMismatch, UnboundReference
from .core.types import SCALAR, Array, parse_enum
from .data.dataset import DataSet, InstanceUse
from .network import NeuralNetwork

DEFAULT_DECISION_THRESHOLD = 0.5


@dataclass(frozen=True)
class PartitionErrors:
    sum_squared_error: float
    mean_squared_error: float
    root_mean_squared_error: float
    normalized_squared_error: float


@dataclass(frozen=True)
class RegressionResults:
    """Least-squares fit of outputs against targets for one output variable."""

    intercept: float
    slope: float
    correlation: float


@dataclass(frozen=True)
class BinaryClassificationTests:
    accuracy: float
    error_rate: float
    sensitivity: float
    specificity: float
    precision: float
    positive_likelihood: float
    negative_likelihood: float
    f1_score: float
    false_positive_rate: float
    false_discovery_rate: float
    false_negative_rate: float
    negative_predictive_value: float
    matthews_correlation: float
    informedness: float
    markedness: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def _ratio(numerator: float, denominator: float) -> float:
    return float(numerator) / float(denominator) if denominator else 0.0


def binary_confusion(targets: Array, outputs: Array, decision_threshold: float) -> Array:
    """``[[TP, FN], [FP, TN]]`` for a single output column."""

    actual = targets[:, 0] >= decision_threshold
    predicted = outputs[:, 0] >= decision_threshold
    return np.array(
        [
            [np.sum(actual & predicted), np.sum(actual & ~predicted)],
            [np.sum(~actual & predicted), np.sum(~actual & ~predicted)],
        ],
        dtype=int,
    )


def multiple_confusion(targets: Array, outputs: Array) -> Array:
    """Rows are actual classes and columns predicted classes, both by argmax."""

    classes = targets.shape[1]
    confusion = np.zeros((classes, classes), dtype=int)
    np.add.at(confusion, (np.argmax(targets, axis=1), np.argmax(outputs, axis=1)), 1)
    return confusion


def binary_tests(confusion: Array) -> BinaryClassificationTests:
    tp, fn = int(confusion[0, 0]), int(confusion[0, 1])
    fp, tn = int(confusion[1, 0]), int(confusion[1, 1])
    total = tp + fn + fp + tn
    accuracy = _ratio(tp + tn, total)
    sensitivity = _ratio(tp, tp + fn)
    specificity = _ratio(tn, tn + fp)
    precision = _ratio(tp, tp + fp)
    negative_predictive_value = _ratio(tn, tn + fn)

    if accuracy == 1.0:
        positive_likelihood = negative_likelihood = 1.0
    else:
        positive_likelihood = _ratio(sensitivity, 1.0 - specificity)
        negative_likelihood = _ratio(specificity, 1.0 - sensitivity)

    product = (tp + fp) * (tp + fn) * (tn + fp) * (tn + fn)
    matthews = (tp * tn - fp * fn) / np.sqrt(float(product)) if product else 0.0

    return BinaryClassificationTests(
        accuracy=accuracy,
        error_rate=_ratio(fp + fn, total),
        sensitivity=sensitivity,
        specificity=specificity,
        precision=precision,
        positive_likelihood=positive_likelihood,
        negative_likelihood=negative_likelihood,
        f1_score=_ratio(2 * tp, 2 * tp + fp + fn),
        false_positive_rate=_ratio(fp, fp + tn),
        false_discovery_rate=_ratio(fp, fp + tp),
        false_negative_rate=_ratio(fn, fn + tp),
        negative_predictive_value=negative_predictive_value,
        matthews_correlation=float(matthews),
        informedness=sensitivity + specificity - 1.0,
        markedness=precision + negative_predictive_value - 1.0,
    )


def linear_regression(targets: Array, outputs: Array) -> RegressionResults:
    x = np.asarray(targets, dtype=SCALAR)
    y = np.asarray(outputs, dtype=SCALAR)
    dx = x - x.mean()
    dy = y - y.mean()
    sxx = float(np.dot(dx, dx))
    syy = float(np.dot(dy, dy))
    sxy = float(np.dot(dx, dy))
    slope = sxy / sxx if sxx > 0 else 0.0
    intercept = float(y.mean() - slope * x.mean())
    if sxx > 0 and syy > 0:
        correlation = sxy / np.sqrt(sxx * syy)
    else:
        # Constant series correlate perfectly only with an identical constant.
        correlation = 1.0 if np.allclose(x, y) else 0.0
    return RegressionResults(intercept=intercept, slope=slope, correlation=float(correlation))


class TestingAnalysis:
    """Compare network outputs with targets, on the testing partition by default."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        network: NeuralNetwork | None,
        data_set: DataSet | None,
        *,
        display: bool = True,
    ) -> None:
        self.network = network
        self.data_set = data_set
        self.display = display

    def check(self) -> None:
        if self.network is None:
            raise UnboundReference("Testing analysis has no neural network")
        if self.data_set is None:
            raise UnboundReference("Testing analysis has no data set")
        self.network.check_layout()
        if self.network.inputs_number != self.data_set.inputs_number:
            raise ShapeMismatch(
                f"Network has {self.network.inputs_number} inputs, data set has {self.data_set.inputs_number}"
            )
        if self.network.outputs_number != self.data_set.targets_number:
            raise ShapeMismatch(
                f"Network has {self.network.outputs_number} outputs, data set has {self.data_set.targets_number}"
            )

    def targets_and_outputs(self, use: InstanceUse | str = InstanceUse.TESTING) -> tuple[Array, Array]:
        self.check()
        use = parse_enum(InstanceUse, use)
        batch = self.data_set.batch(use)
        return batch.targets, self.network.calculate_outputs(batch.inputs)

    def _binary(self, use: InstanceUse | str) -> tuple[Array, Array]:
        targets, outputs = self.targets_and_outputs(use)
        if targets.shape[1] != 1:
            raise InvalidConfiguration("Binary classification analysis needs a single target")
        return targets, outputs

    # ------------------------------------------------------------------
    # Errors

    def calculate_errors(self) -> Dict[str, PartitionErrors]:
        """SSE, MSE, RMSE and NSE for every non-empty partition."""

        self.check()
        errors: Dict[str, PartitionErrors] = {}
        for use in (InstanceUse.TRAINING, InstanceUse.SELECTION, InstanceUse.TESTING):
            if self.data_set.partition_size(use) == 0:
                continue
            targets, outputs = self.targets_and_outputs(use)
            sse = float(np.sum((outputs - targets) ** 2))
            mse = sse / targets.shape[0]
            deviation = float(np.sum((targets - targets.mean(axis=0)) ** 2))
            nse = sse / deviation if deviation > 1e-12 else sse
            errors[use.value] = PartitionErrors(sse, mse, float(np.sqrt(mse)), nse)
        if self.display:
            for name, values in errors.items():
                print(
                    f"{name:<10}: sse={values.sum_squared_error:.6g} mse={values.mean_squared_error:.6g} "
                    f"rmse={values.root_mean_squared_error:.6g} nse={values.normalized_squared_error:.6g}"
                )
        return errors

    def perform_linear_regression_analysis(self, use: InstanceUse | str = InstanceUse.TESTING) -> List[RegressionResults]:
        targets, outputs = self.targets_and_outputs(use)
        return [linear_regression(targets[:, j], outputs[:, j]) for j in range(targets.shape[1])]

    # ------------------------------------------------------------------
    # Classification

    def calculate_confusion(
        self,
        decision_threshold: float | None = None,
        use: InstanceUse | str = InstanceUse.TESTING,
    ) -> Array:
        """Binary ``[[TP, FN], [FP, TN]]`` for one output, argmax counts otherwise."""

        targets, outputs = self.targets_and_outputs(use)
        if targets.shape[1] == 1:
            threshold = DEFAULT_DECISION_THRESHOLD if decision_threshold is None else float(decision_threshold)
            return binary_confusion(targets, outputs, threshold)
        return multiple_confusion(targets, outputs)

    def calculate_binary_classification_tests(
        self,
        decision_threshold: float | None = None,
        use: InstanceUse | str = InstanceUse.TESTING,
    ) -> BinaryClassificationTests:
        self._binary(use)
        return binary_tests(self.calculate_confusion(decision_threshold, use))

    def calculate_roc_curve(self, use: InstanceUse | str = InstanceUse.TESTING) -> Array:
        """Columns are false positive rate, true positive rate and threshold."""

        targets, outputs = self._binary(use)
        actual = targets[:, 0] >= DEFAULT_DECISION_THRESHOLD
        positives = int(np.sum(actual))
        if positives == 0 or positives == actual.size:
            raise EmptyPartition("ROC curve needs both positive and negative instances")
        fpr, tpr, thresholds = roc_curve(actual.astype(int), outputs[:, 0], drop_intermediate=False)
        # The leading point predicts nothing positive.
        thresholds[0] = outputs[:, 0].max() + 1.0
        return np.column_stack([fpr, tpr, thresholds]).astype(SCALAR)

    def calculate_area_under_curve(self, use: InstanceUse | str = InstanceUse.TESTING) -> float:
        curve = self.calculate_roc_curve(use)
        return float(auc(curve[:, 0], curve[:, 1]))

    def calculate_optimal_threshold(self, use: InstanceUse | str = InstanceUse.TESTING) -> float:
        """Threshold of the ROC point nearest the upper-left corner ``(0, 1)``."""

        curve = self.calculate_roc_curve(use)
        distance = np.hypot(curve[:, 0], curve[:, 1] - 1.0)
        return float(curve[int(np.argmin(distance)), 2])


__all__ = [
    "BinaryClassificationTests",
    "DEFAULT_DECISION_THRESHOLD",
    "PartitionErrors",
    "RegressionResults",
    "TestingAnalysis",
    "binary_confusion",
    "binary_tests",
    "linear_regression",
    "multiple_confusion",
]
