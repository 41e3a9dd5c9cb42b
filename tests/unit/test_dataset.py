import numpy as np
import pandas as pd
import pytest

from tabnn.core.errors import EmptyPartition, InvalidConfiguration, ShapeMismatch
from tabnn.data import DataSet, InstanceUse, VariableUse, available_datasets, get_dataset
from tabnn.data.utils import minibatch_indices, split_indices


def _matrix(rows=10, columns=4):
    return np.arange(rows * columns, dtype=float).reshape(rows, columns)


def test_defaults_use_last_column_as_target():
    data_set = DataSet(_matrix())
    assert data_set.variable_uses == [VariableUse.INPUT] * 3 + [VariableUse.TARGET]
    assert data_set.inputs_number == 3 and data_set.targets_number == 1
    assert data_set.partition_sizes() == {"Training": 10, "Selection": 0, "Testing": 0, "Unused": 0}
    assert data_set.input_names() == ["variable_1", "variable_2", "variable_3"]


def test_constructor_checks_sizes():
    with pytest.raises(ShapeMismatch):
        DataSet(np.zeros(5))
    with pytest.raises(ShapeMismatch):
        DataSet(_matrix(), variable_names=["a", "b"])
    with pytest.raises(ShapeMismatch):
        DataSet(_matrix(), instance_uses=["Training"] * 3)


def test_split_instances_partitions_every_row():
    data_set = DataSet(_matrix(rows=50))
    data_set.split_instances(0.6, 0.2, 0.2, seed=3)
    sizes = data_set.partition_sizes()
    assert (sizes["Training"], sizes["Selection"], sizes["Testing"]) == (30, 10, 10)
    rows = np.concatenate([data_set.instance_indices(use) for use in ("Training", "Selection", "Testing")])
    assert sorted(rows.tolist()) == list(range(50))


def test_split_is_reproducible_and_validated():
    first = split_indices(40, seed=7)
    second = split_indices(40, seed=7)
    np.testing.assert_array_equal(first.training, second.training)
    with pytest.raises(InvalidConfiguration):
        split_indices(40, training=0.5, selection=0.2, testing=0.2)
    with pytest.raises(InvalidConfiguration):
        split_indices(40, training=1.2, selection=-0.2, testing=0.0)
    with pytest.raises(EmptyPartition):
        split_indices(0)


def test_splits_leave_the_global_generator_alone():
    np.random.seed(123)
    expected = np.random.random()
    np.random.seed(123)
    split_indices(40, seed=7)
    get_dataset("linear_regression", n_points=30, seed=5)
    assert np.random.random() == expected


def test_use_changes_bump_the_version():
    data_set = DataSet(_matrix())
    version = data_set.version
    data_set.set_variable_use("variable_1", "Unused")
    data_set.split_instances(0.5, 0.5, 0.0)
    assert data_set.version == version + 2
    assert data_set.inputs_number == 2


def test_empty_partition_raises():
    data_set = DataSet(_matrix())
    with pytest.raises(EmptyPartition):
        data_set.batch(InstanceUse.TESTING)
    data_set.set_instance_uses(["Unused"] * 10)
    with pytest.raises(EmptyPartition):
        data_set.input_descriptives()


def test_batch_selects_inputs_and_targets():
    data_set = DataSet(_matrix(rows=4), variable_uses=["Input", "Unused", "Input", "Target"])
    batch = data_set.batch()
    np.testing.assert_array_equal(batch.inputs, _matrix(rows=4)[:, [0, 2]])
    np.testing.assert_array_equal(batch.targets, _matrix(rows=4)[:, [3]])
    assert batch.size == 4


def test_set_input_indices_keeps_targets():
    data_set = DataSet(_matrix(columns=5))
    data_set.set_input_indices([1, 3])
    assert data_set.input_indices() == [1, 3]
    assert data_set.variable_uses[0] is VariableUse.UNUSED
    with pytest.raises(InvalidConfiguration):
        data_set.set_input_indices([4])


def test_descriptives_and_class_counts():
    data = np.column_stack([np.arange(6.0), [0, 1, 1, 0, 1, 1]])
    data_set = DataSet(data)
    stats = data_set.input_descriptives()
    assert stats.minimum[0] == 0.0 and stats.maximum[0] == 5.0
    assert stats.mean[0] == pytest.approx(2.5)
    assert data_set.class_counts().tolist() == [2, 4]
    assert data_set.positives_negatives() == (4, 2)
    assert data_set.target_sum_squares() == pytest.approx(np.sum((data[:, 1] - data[:, 1].mean()) ** 2))


def test_from_frame_encodes_categories():
    frame = pd.DataFrame(
        {
            "size": [1.0, 2.0, 3.0, 4.0],
            "colour": ["red", "blue", "red", "green"],
            "label": ["yes", "no", "yes", "no"],
        }
    )
    data_set = DataSet.from_frame(frame)
    assert data_set.input_names() == ["size", "colour_blue", "colour_green", "colour_red"]
    assert data_set.target_names() == ["label"]
    assert data_set.targets().ravel().tolist() == [1.0, 0.0, 1.0, 0.0]
    with pytest.raises(KeyError):
        DataSet.from_frame(frame, targets="missing")


def test_from_time_series_builds_lagged_windows():
    data_set = DataSet.from_time_series(np.arange(6.0), lags=2, names=["s"])
    assert data_set.input_names() == ["s_lag_2", "s_lag_1"]
    np.testing.assert_array_equal(data_set.inputs()[0], [0.0, 1.0])
    np.testing.assert_array_equal(data_set.targets().ravel(), [2.0, 3.0, 4.0, 5.0])
    with pytest.raises(EmptyPartition):
        DataSet.from_time_series(np.arange(2.0), lags=2)


def test_minibatches_cover_the_partition():
    chunks = list(minibatch_indices(np.arange(10), 4))
    assert [chunk.tolist() for chunk in chunks] == [[0, 1, 2, 3], [4, 5, 6, 7], [8, 9]]
    shuffled = np.concatenate(list(minibatch_indices(np.arange(10), 3, np.random.default_rng(0))))
    assert sorted(shuffled.tolist()) == list(range(10))
    with pytest.raises(InvalidConfiguration):
        list(minibatch_indices(np.arange(3), 0))


def test_registry_lists_and_builds_factories():
    names = list(available_datasets())
    for name in ("breast_cancer", "csv", "linear_regression", "relevant_subset", "sine_series", "xor"):
        assert name in names
    xor = get_dataset("xor")
    assert xor.inputs_number == 2 and xor.partition_size("Selection") > 0
    regression = get_dataset("linear_regression", n_points=40, seed=1)
    assert regression.instances_number == 40
    with pytest.raises(KeyError, match="Available"):
        get_dataset("does_not_exist")


def test_breast_cancer_marks_malignant_as_positive():
    data_set = get_dataset("breast_cancer", seed=0)
    assert data_set.inputs_number == 30
    assert data_set.instances_number == 569
    positives = int(np.sum(data_set.data[:, -1]))
    assert positives == 212


def test_csv_factory_reads_files(tmp_path):
    path = tmp_path / "table.csv"
    pd.DataFrame({"a": range(10), "b": range(10, 20), "y": range(20, 30)}).to_csv(path, index=False)
    data_set = get_dataset("csv", csv_path=str(path), training=0.8, selection=0.2, testing=0.0)
    assert data_set.input_names() == ["a", "b"]
    assert data_set.partition_sizes()["Testing"] == 0
    with pytest.raises(FileNotFoundError):
        get_dataset("csv", csv_path=str(tmp_path / "missing.csv"))
