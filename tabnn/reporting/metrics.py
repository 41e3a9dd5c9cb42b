"""Per-epoch metric sinks usable as training callbacks."""

from __future__ import annotations

import csv
import json
import math
from pathlib import Path
from typing import List, Mapping, Sequence

DEFAULT_FIELDS = ("training_loss", "selection_loss", "gradient_norm", "learning_rate", "elapsed_time")


def _numeric(metrics: Mapping[str, object]) -> dict:
    return {k: float(v) for k, v in metrics.items() if isinstance(v, (int, float))}


def _json_value(value: float) -> float | None:
    return value if math.isfinite(value) else None


class JsonlSink:
    """Append-only JSONL writer; one record per epoch."""

    def __init__(
        self,
        path: str | Path,
        *,
        split: str = "train",
        seed: int | None = None,
        run_id: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self.split = split
        self.seed = seed
        self.run_id = run_id

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        record = {"epoch": int(epoch), "split": self.split, "seed": self.seed}
        if self.run_id is not None:
            record["run_id"] = self.run_id
        record.update({k: _json_value(v) for k, v in _numeric(metrics).items()})
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record) + "\n")

    __call__ = on_epoch


class CsvSink:
    """CSV writer with a fixed column order: epoch, split, then ``fields``."""

    def __init__(self, path: str | Path, *, split: str = "train", fields: Sequence[str] = DEFAULT_FIELDS) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self.split = split
        self.fields: List[str] = ["epoch", "split", *fields]

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        row = {"epoch": int(epoch), "split": self.split}
        row.update({k: v for k, v in _numeric(metrics).items() if k in self.fields})
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.fields)
            if handle.tell() == 0:
                writer.writeheader()
            writer.writerow(row)

    __call__ = on_epoch


class MetricsCapture:
    """Keeps every epoch's metrics in memory."""

    def __init__(self) -> None:
        self.history: List[tuple[int, Mapping[str, float]]] = []
        self.last: Mapping[str, float] = {}

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        payload = _numeric(metrics)
        self.history.append((int(epoch), payload))
        self.last = payload

    def series(self, name: str) -> List[float]:
        return [metrics.get(name, math.nan) for _, metrics in self.history]


__all__ = ["CsvSink", "DEFAULT_FIELDS", "JsonlSink", "MetricsCapture"]
