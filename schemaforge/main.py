from __future__ import annotations

import argparse
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from schemaforge.artifacts.writers import write_generated, write_run_summary, write_trace
from schemaforge.collaborators import LlmCollaborators
from schemaforge.config import EngineConfig
from schemaforge.errors import SchemaForgeError
from schemaforge.pipeline_convergence import ConvergencePipeline
from schemaforge.utils.io import read_text, write_text
from schemaforge.utils.logs import setup_logging
from schemaforge.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

EXIT_CONVERGED = 0
EXIT_FATAL = 1
EXIT_EXHAUSTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Converge generated JSON onto a JSON Schema with an LLM repair loop"
    )
    parser.add_argument("--mode", choices=["mock", "live"], required=True)
    parser.add_argument("--schema", required=True, help="Path to the JSON Schema document")
    intent = parser.add_mutually_exclusive_group(required=True)
    intent.add_argument("--intent", help="Test scenario for the generated data")
    intent.add_argument("--intent-file", help="File holding the test scenario")
    parser.add_argument("--config", help="YAML file overriding engine settings")
    parser.add_argument("--max-rounds", type=int, default=None)
    parser.add_argument("--runs-dir", default="runs")
    parser.add_argument("--log-level", default="INFO")
    return parser


def _ensure_env(config: EngineConfig) -> None:
    missing = [key for key in config.required_keys() if not os.getenv(key)]
    if missing:
        missing_keys = ", ".join(missing)
        raise RuntimeError(
            "Missing required API keys: "
            f"{missing_keys}. Create a .env file from .env.example and set the keys."
        )


def _load_config(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.from_env()
    if args.config:
        config = config.overlay_yaml(Path(args.config))
    if args.max_rounds is not None:
        config = replace(config, max_rounds=args.max_rounds)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    load_dotenv(Path.cwd() / ".env")
    config = _load_config(args)

    if args.mode == "live":
        _ensure_env(config)

    schema_text = read_text(Path(args.schema))
    intent = args.intent if args.intent is not None else read_text(Path(args.intent_file))

    run_id = utc_timestamp()
    run_dir = Path(args.runs_dir) / run_id
    inputs_dir = run_dir / "inputs"
    raw_dir = run_dir / "raw"
    artifacts_dir = run_dir / "artifacts"
    for path in [inputs_dir, raw_dir, artifacts_dir]:
        path.mkdir(parents=True, exist_ok=True)

    write_text(inputs_dir / "schema.json", schema_text)
    write_text(inputs_dir / "intent.md", intent)

    collaborators = LlmCollaborators(args.mode, config)
    pipeline = ConvergencePipeline(collaborators, config, raw_dir)
    try:
        result = pipeline.run(intent, schema_text)
    except SchemaForgeError as exc:
        logger.error("[run] %s", exc)
        write_text(artifacts_dir / "error.md", f"# Run Failed\n\n{exc}\n")
        return EXIT_FATAL

    write_generated(artifacts_dir / "generated.json", result.generated_json)
    write_trace(artifacts_dir / "trace.json", result.trace)
    write_run_summary(
        artifacts_dir / "run_summary.md", result, args.mode, collaborators.responses
    )
    print(f"Run {run_id} {result.status} after {result.rounds} round(s): {run_dir}")
    return EXIT_CONVERGED if result.converged else EXIT_EXHAUSTED


if __name__ == "__main__":
    raise SystemExit(main())
