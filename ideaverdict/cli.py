#!/usr/bin/env python3
# ================================================================
# IdeaVerdict CLI
# Antagon Inc. | CAGE: 17E75 | UEI: KBSGT7CZ4AH3
# ================================================================

"""
IdeaVerdict Command Line Interface

Usage:
    ideaverdict verdict evaluation.txt
    cat evaluation.txt | ideaverdict verdict -
    ideaverdict verdict --score 55
    ideaverdict bands
    ideaverdict serve --port 8000
"""

import argparse
import json
import sys

from ideaverdict import __version__
from ideaverdict.config import load_config
from ideaverdict.verdict import derive_outcome, fallback_score, verdict_for_stored_score


def _read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    with open(source, encoding="utf-8") as f:
        return f.read()


def cmd_verdict(args, table) -> int:
    if args.score is not None:
        if not 0 <= args.score <= 100:
            print(f"Error: score must be between 0 and 100, got {args.score}", file=sys.stderr)
            return 1
        category = verdict_for_stored_score(args.score, table)
        result = {
            "score": args.score,
            "verdict": category.label,
            "verdictCategory": category.value,
        }
    else:
        if not args.file:
            print("Error: provide an evaluation file, '-' for stdin, or --score", file=sys.stderr)
            return 1
        try:
            text = _read_text(args.file)
        except OSError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        outcome = derive_outcome(text, table)
        result = {
            "score": outcome.score,
            "displayScore": outcome.score
            if outcome.score is not None
            else fallback_score(outcome.verdict, table),
            "verdict": outcome.label,
            "verdictCategory": outcome.verdict.value,
            "inferredCategory": outcome.inferred_category,
            "executionDifficulty": outcome.execution_difficulty,
        }

    if args.json:
        print(json.dumps(result, indent=2))
    else:
        score = result["score"]
        print(f"Verdict: {result['verdict']}")
        print(f"Score: {f'{score}%' if score is not None else 'not found'}")
        if score is None and result.get("displayScore") is not None:
            print(f"Display score: {result['displayScore']}% (estimated from verdict)")
    return 0


def cmd_bands(args, table) -> int:
    bands = [
        {
            "lower": band.lower,
            "upper": band.upper,
            "category": band.category.value,
            "label": band.category.label,
        }
        for band in reversed(list(table))
    ]
    if args.json:
        print(json.dumps(bands, indent=2))
    else:
        for band in bands:
            print(f"{band['lower']:>3}-{band['upper']:<3}  {band['label']}")
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run(
        "ideaverdict.api:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ideaverdict",
        description="IdeaVerdict: deterministic startup idea verdicts",
        epilog="Antagon Inc. | https://antagon.ai",
    )
    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"ideaverdict {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        help="YAML configuration file",
    )
    subparsers = parser.add_subparsers(dest="command")

    verdict = subparsers.add_parser("verdict", help="Derive a verdict from an evaluation")
    verdict.add_argument("file", nargs="?", help="Evaluation text file, or '-' for stdin")
    verdict.add_argument("-s", "--score", type=int, help="Re-derive from a stored score")
    verdict.add_argument("--json", action="store_true", help="Output as JSON")

    bands = subparsers.add_parser("bands", help="Print the active verdict bands")
    bands.add_argument("--json", action="store_true", help="Output as JSON")

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("-p", "--port", type=int, default=8000)
    serve.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
    )

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "serve":
        return cmd_serve(args)

    try:
        table = load_config(args.config).band_table()
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.command == "verdict":
        return cmd_verdict(args, table)
    return cmd_bands(args, table)


if __name__ == "__main__":
    sys.exit(main())
