# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for FinSight Pipeline.

The CLI is intentionally thin: it reads a raw field set from disk, loads
the TOML configuration, calls ``run_pipeline()`` and renders the result as
console tables (pandas ``to_string``) and/or a JSON file. It does not
implement any financial logic itself.


Commands
--------

run INPUT
    Run the pipeline on a JSON / CSV / XLSX field set.

    --charts ID [ID ...]     charts to assign (default: all)
    --scenario NAME          base | optimista | pesimista (enables projections)
    --years N                project years A0..AN (enables projections)
    --growth PCT             revenue growth rate override, in percent
    --overrides PATH         JSON file {label: canonical_field} for this client
    --deep-validate          call the external validation service
    --output PATH            write the full result as JSON
    --user / --session       key of the audit record (when [audit] is enabled)

audit [--user ID]
    List the pipeline runs stored in the audit database.


Global options
--------------
    --config PATH            TOML configuration (default:
                             finsight_pipeline_config.toml if present)
    --log-level LEVEL        DEBUG, INFO, WARNING (default), ERROR
    --version                print the installed version and exit


Examples
--------
    finsight-pipeline run data/balance.json
    finsight-pipeline run upload.xlsx --charts profit_loss balance_sheet
    finsight-pipeline run upload.csv --scenario optimista --years 5 --growth 12.5
    finsight-pipeline --config finsight_pipeline_config.toml run upload.json \\
        --output out/result.json
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .charts import CHART_REQUIREMENTS
from .config import PipelineConfig, load_pipeline_config
from .errors import ConfigurationError
from .io import describe_sheet, read_raw_fieldset, write_result
from .pipeline import PipelineResult, run_pipeline
from .projections import Scenario
from .vocabulary import is_canonical

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="finsight-pipeline",
        description=(
            "FinSight Pipeline - Financial data normalization & projections "
            "for SMBs. Maps raw financial labels onto a canonical vocabulary, "
            "cleans and validates values, assigns chart data and projects "
            "statements over several years."
        ),
    )

    # Generic options
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of finsight_pipeline and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the TOML configuration file. If omitted, "
            "'finsight_pipeline_config.toml' in the current directory is used "
            "when it exists."
        ),
    )
    ap.add_argument(
        "--log-level",
        dest="log_level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )

    subparsers = ap.add_subparsers(dest="command", metavar="command")

    # run
    run_parser = subparsers.add_parser(
        "run", help="Run the pipeline on a raw field set (JSON, CSV or XLSX)."
    )
    run_parser.add_argument("input", help="Path to the raw field set.")
    run_parser.add_argument(
        "--charts",
        nargs="+",
        choices=sorted(CHART_REQUIREMENTS),
        help="Charts to assign. If omitted, every chart is assigned.",
    )
    run_parser.add_argument(
        "--scenario",
        choices=[s.value for s in Scenario],
        help="Projection scenario. Providing it enables projections.",
    )
    run_parser.add_argument(
        "--years",
        type=int,
        help="Number of projected years after A0. Providing it enables projections.",
    )
    run_parser.add_argument(
        "--growth",
        type=float,
        help="Revenue growth rate in percent, overriding the configuration.",
    )
    run_parser.add_argument(
        "--overrides",
        dest="overrides_path",
        help="JSON file of client-specific mappings {label: canonical_field}.",
    )
    run_parser.add_argument(
        "--deep-validate",
        dest="deep_validate",
        action="store_true",
        help="Call the external validation service configured in [deep_validation].",
    )
    run_parser.add_argument(
        "--output",
        dest="output_path",
        help="Write the full result as JSON to this path.",
    )
    run_parser.add_argument(
        "--user", dest="user_id", default="cli", help="Audit record user id."
    )
    run_parser.add_argument(
        "--session",
        dest="session_id",
        help="Audit record session id (defaults to the current UTC timestamp).",
    )

    # audit
    audit_parser = subparsers.add_parser(
        "audit", help="List pipeline runs stored in the audit database."
    )
    audit_parser.add_argument(
        "--user", dest="user_id", help="Only show runs of this user."
    )

    return ap


def _load_overrides(path: str) -> dict[str, str]:
    """Read a client override table, keeping only canonical targets."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Overrides file must contain a JSON object: {path}")
    unknown = sorted({str(v) for v in data.values() if not is_canonical(str(v))})
    if unknown:
        logger.warning("Overrides with unknown canonical fields: %s", ", ".join(unknown))
    return {str(k): str(v) for k, v in data.items()}


def _print_section(title: str, df: pd.DataFrame, index: bool = False) -> None:
    print()
    print(f"=== {title} ===")
    if df.empty:
        print("(none)")
    else:
        print(df.to_string(index=index))


def render_result(result: PipelineResult) -> None:
    """Print a human-readable summary of a pipeline run."""
    status = "VALID" if result.is_valid else "INVALID"
    print(
        f"Result: {status} | confidence {result.confidence:.2f} | "
        f"completion {result.completion_score:.2f} | unit {result.unit.value}"
        + (" (mixed magnitudes)" if result.detection.mixed else "")
    )

    fields_df = pd.DataFrame(
        [
            {
                "field": k,
                "value": v,
                "provenance": result.provenance.get(k, "input"),
            }
            for k, v in result.dashboard_fields.to_dict().items()
        ],
        columns=["field", "value", "provenance"],
    )
    _print_section("Canonical fields", fields_df)

    if result.mapping.unmapped:
        print()
        print("Unmapped labels: " + ", ".join(result.mapping.unmapped))

    issues_df = pd.DataFrame(
        [i.to_dict() for i in result.issues],
        columns=["severity", "field", "message"],
    )
    _print_section("Issues", issues_df)

    suggestions_df = pd.DataFrame(
        [s.to_dict() for s in result.suggestions],
        columns=["type", "action", "message"],
    )
    _print_section("Suggestions", suggestions_df)

    charts_df = pd.DataFrame(
        [
            {
                "chart": c.chart_id,
                "confidence": round(c.confidence, 2),
                "missing": ", ".join(c.missing_fields),
                "synthetic": ", ".join(sorted(c.synthetic_data or {})),
            }
            for c in result.charts
        ],
        columns=["chart", "confidence", "missing", "synthetic"],
    )
    _print_section("Charts", charts_df)

    kpis_df = pd.DataFrame(
        [
            {
                "kpi": k,
                "value": round(v, 2),
                "benchmark": result.benchmarks.get(k, {}).get("benchmark"),
                "status": result.benchmarks.get(k, {}).get("status", ""),
            }
            for k, v in result.kpis.items()
        ],
        columns=["kpi", "value", "benchmark", "status"],
    )
    _print_section("KPIs", kpis_df)

    if result.projections is not None:
        frames = result.projections.to_frames()
        label = result.projections.scenario.value
        for name, title in (
            ("pl", "P&L"),
            ("balance", "Balance sheet"),
            ("cash_flow", "Cash flow"),
            ("ratios", "Ratios"),
        ):
            _print_section(f"Projection {title} ({label})", frames[name].round(2), index=True)

    if result.deep_report is not None:
        scores = result.deep_report.get("confidence_scores", {})
        print()
        print(
            "Deep validation: overall score "
            f"{result.deep_report['validation_results']['overall_score']} | "
            f"overall confidence {scores.get('overall_confidence')}"
        )


def _handle_run(
    args: argparse.Namespace, config: PipelineConfig, parser: argparse.ArgumentParser
) -> None:
    input_path = Path(args.input)
    if not input_path.is_file():
        parser.error(f"Input file not found: {input_path}")
    if args.years is not None and args.years < 0:
        parser.error("--years must be zero or positive.")

    if args.deep_validate:
        config = replace(
            config, deep_validation=replace(config.deep_validation, enabled=True)
        )

    try:
        raw = read_raw_fieldset(input_path)
        overrides = _load_overrides(args.overrides_path) if args.overrides_path else None
        sheet = describe_sheet(input_path, raw)
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    assumptions = config.projection_assumptions
    if args.growth is not None:
        assumptions = replace(assumptions, growth_rate=args.growth)

    year_range = (0, args.years) if args.years is not None else None

    result = run_pipeline(
        raw,
        overrides=overrides,
        charts=args.charts,
        scenario=args.scenario,
        assumptions=assumptions,
        year_range=year_range,
        config=config,
    )

    if sheet is not None:
        print(
            f"Sheet '{sheet['sheet']}': {sheet['kind']} "
            f"(confidence {sheet['confidence']:.2f})"
        )
    render_result(result)

    if args.output_path:
        out = write_result(result, args.output_path)
        print()
        print(f"Result written to {out}")

    store = config.audit.open_store()
    if store is not None:
        session_id = args.session_id or pd.Timestamp.now(tz="UTC").strftime(
            "%Y%m%dT%H%M%S"
        )
        try:
            record = store.write(
                result.to_audit_record(args.user_id, session_id, input_path.name)
            )
        except ValueError as exc:
            print(f"Warning: audit record not written: {exc}", file=sys.stderr)
        else:
            logger.info("Audit record #%s written", record.id)


def _handle_audit(args: argparse.Namespace, config: PipelineConfig) -> None:
    store = config.audit.open_store()
    if store is None:
        print("Audit store is disabled. Enable it in the [audit] section.")
        return
    df = store.list_runs(user_id=args.user_id)
    if df.empty:
        print("No pipeline runs recorded.")
        return
    print(df.to_string(index=False))


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the FinSight Pipeline CLI."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"finsight_pipeline version {__version__}")
        return

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return

    try:
        config = load_pipeline_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    try:
        if args.command == "run":
            _handle_run(args, config, parser)
        elif args.command == "audit":
            _handle_audit(args, config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
