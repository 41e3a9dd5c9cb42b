"""Command line entry point for tabnn training runs."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Iterable

from tabnn.training import pipelines


def _format_result(result) -> str:
    payload = {
        "epochs": result.epochs,
        "stopping_condition": result.stopping_condition,
        "metrics": result.metrics_path,
        "manifest": result.manifest_path,
    }
    if result.summary_path:
        payload["summary"] = result.summary_path
    if result.network_path:
        payload["network"] = result.network_path
    return json.dumps(payload, sort_keys=True)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    preset_names = sorted(pipelines.presets().keys())
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--preset",
        choices=preset_names,
        default="xor_levenberg_marquardt",
        help="Preset configuration to execute",
    )
    parser.add_argument("--config", type=Path, help="Optional JSON/YAML config override")
    parser.add_argument("--run-dir", type=Path, help="Directory receiving the run artifacts")
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed used for data set splits and parameter initialisation",
    )
    parser.add_argument("--quiet", action="store_true", help="Disable progress output")
    parser.add_argument("--enable-plots", action="store_true", help="Draw the loss curves")
    parser.add_argument("--list-presets", action="store_true", help="List available presets and exit")
    parser.add_argument("--dump-config", type=Path, help="Dump the resolved config to a JSON file")
    return parser.parse_args(argv)


def _merge(base: dict, override: dict) -> dict:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(dict(base[key]), value)
        else:
            base[key] = value
    return base


def _load_override(path: Path) -> dict:
    # Partial overrides are allowed, so the section check of read_config does not apply.
    return dict(pipelines._read_preset_file(path))


def main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)

    if args.list_presets:
        for name in sorted(pipelines.presets().keys()):
            print(name)
        raise SystemExit(0)

    config = json.loads(json.dumps(pipelines.load_preset(args.preset)))

    if args.config:
        override = _load_override(args.config)
        if {"data", "model", "training"} <= set(override.keys()):
            config = json.loads(json.dumps(override))
        else:
            config = _merge(config, override)

    training = config.setdefault("training", {})
    if args.run_dir is not None:
        training["run_dir"] = str(args.run_dir)
    if args.enable_plots:
        training["enable_plots"] = True
    if args.quiet:
        training["display"] = False
        if "selection" in config:
            config["selection"]["display"] = False
    if args.seed is not None:
        config.setdefault("data", {}).setdefault("options", {})["seed"] = int(args.seed)
        config.setdefault("model", {})["seed"] = int(args.seed)

    if args.dump_config:
        args.dump_config.parent.mkdir(parents=True, exist_ok=True)
        args.dump_config.write_text(json.dumps(config, indent=2))

    result = pipelines.run_pipeline(config)
    print(_format_result(result))


if __name__ == "__main__":
    main()
