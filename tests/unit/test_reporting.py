import csv
import json
import math

from tabnn.reporting import CsvSink, JsonlSink, MetricsCapture, PlotAdapter, write_manifest, write_summary
from tabnn.reporting.summary import summarise

EPOCHS = [
    {"training_loss": 1.0, "selection_loss": 1.2, "gradient_norm": 0.5, "learning_rate": 0.1, "elapsed_time": 0.01},
    {"training_loss": 0.5, "selection_loss": math.nan, "gradient_norm": 0.2, "learning_rate": 0.1, "elapsed_time": 0.02},
    {"training_loss": 0.25, "selection_loss": 0.9, "gradient_norm": 0.1, "learning_rate": 0.2, "elapsed_time": 0.03},
]


def _feed(sink):
    for epoch, metrics in enumerate(EPOCHS, start=1):
        sink.on_epoch(epoch, metrics)


def test_jsonl_sink_writes_one_record_per_epoch(tmp_path):
    sink = JsonlSink(tmp_path / "metrics.jsonl", seed=3, run_id="abc")
    _feed(sink)
    records = [json.loads(line) for line in (tmp_path / "metrics.jsonl").read_text().splitlines()]
    assert [record["epoch"] for record in records] == [1, 2, 3]
    assert records[0]["split"] == "train" and records[0]["seed"] == 3 and records[0]["run_id"] == "abc"
    assert records[1]["selection_loss"] is None


def test_csv_sink_has_fixed_columns(tmp_path):
    sink = CsvSink(tmp_path / "metrics.csv")
    _feed(sink)
    with (tmp_path / "metrics.csv").open() as handle:
        rows = list(csv.DictReader(handle))
    assert len(rows) == 3
    assert list(rows[0]) == ["epoch", "split", "training_loss", "selection_loss", "gradient_norm", "learning_rate", "elapsed_time"]
    assert float(rows[2]["training_loss"]) == 0.25


def test_metrics_capture_series():
    capture = MetricsCapture()
    _feed(capture)
    assert capture.series("training_loss") == [1.0, 0.5, 0.25]
    assert math.isnan(capture.series("missing")[0])
    assert capture.last["learning_rate"] == 0.2


def test_summary_skips_non_finite_values(tmp_path):
    sink = JsonlSink(tmp_path / "metrics.jsonl")
    _feed(sink)
    path = write_summary(tmp_path / "metrics.jsonl", tmp_path / "summary.json", tail=2, extra={"note": "x"})
    summary = json.loads((tmp_path / "summary.json").read_text())
    assert path.endswith("summary.json")
    assert summary["records"] == 3 and summary["tail_window"] == 2
    selection = summary["metrics"]["selection_loss"]
    assert selection["min"] == 0.9 and selection["argmin_epoch"] == 3
    assert summary["metrics"]["training_loss"]["tail_mean"] == 0.375
    assert summary["note"] == "x"
    assert summarise([])["metrics"] == {}


def test_manifest_records_config_and_artifacts(tmp_path):
    path = write_manifest(
        tmp_path / "manifest.json",
        config={"training": {"max_epochs": 3}},
        data_set={"instances": 10},
        artifacts={"network": "network.json"},
    )
    manifest = json.loads(open(path).read())
    assert manifest["config"]["training"]["max_epochs"] == 3
    assert manifest["artifacts"] == {"network": "network.json"}
    assert "git_sha" in manifest and "numpy" in manifest["environment"]


def test_plot_adapter_draws_only_when_enabled(tmp_path):
    disabled = PlotAdapter(tmp_path / "off")
    _feed(disabled)
    assert disabled.close() is None
    enabled = PlotAdapter(tmp_path / "on", enable_plots=True)
    _feed(enabled)
    plot = enabled.close()
    assert plot is not None and plot.exists()
