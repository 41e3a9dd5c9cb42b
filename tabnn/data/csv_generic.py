"""Generic CSV loader for regression and classification tasks."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from .dataset import DataSet
from .registry import register_dataset


@register_dataset("csv")
def load_csv(
    *,
    csv_path: str | Path | None = None,
    targets: Sequence[str] | str | None = None,
    unused: Sequence[str] = (),
    delimiter: str = ",",
    has_header: bool = True,
    training: float = 0.6,
    selection: float = 0.2,
    testing: float = 0.2,
    seed: int = 0,
    **_: object,
) -> DataSet:
    """Load a CSV file; the last column is the target unless ``targets`` is set."""

    if csv_path is None:
        raise TypeError("The csv dataset requires csv_path")
    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")
    data_set = DataSet.from_csv(
        path, delimiter=delimiter, has_header=has_header, targets=targets, unused=unused
    )
    data_set.split_instances(training, selection, testing, seed=seed)
    return data_set


__all__ = ["load_csv"]
