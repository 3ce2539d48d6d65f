import argparse
import json
from pathlib import Path

from . import __version__
from .config import IntakeConfig
from .env import load_env
from .logger import get_logger
from .resolution import rank_candidates, string_similarity
from .schema import validate_record


def _load_json(path_arg: str):
    path = Path(path_arg)
    if not path.exists():
        raise SystemExit(f"Input file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise SystemExit(f"Invalid JSON in {path}: {e}")


def cmd_validate(args: argparse.Namespace) -> None:
    record = _load_json(args.record)
    if not isinstance(record, dict):
        raise SystemExit("Record must be a JSON object")
    report = validate_record(record, args.config.reference)
    if report:
        print("Invalid:")
        for step, errors in report.items():
            print(f" {step}:")
            for e in errors:
                print(f"  - {e}")
        raise SystemExit(2)
    print("Valid")


def cmd_check_duplicates(args: argparse.Namespace) -> None:
    record = _load_json(args.record)
    candidates = _load_json(args.candidates)
    if isinstance(candidates, dict):
        candidates = candidates.get("persons", [])
    if not isinstance(record, dict) or not isinstance(candidates, list):
        raise SystemExit("Expected a record object and a list of candidates")

    threshold = args.threshold if args.threshold is not None else args.config.duplicate_threshold
    matches = rank_candidates(record, candidates, threshold)
    if not matches:
        print("No potential duplicates.")
        return
    print(f"Found {len(matches)} potential duplicates (threshold {threshold:.1f}):\n")
    for match in matches:
        fields = match.fields
        print(f"ID: {match.candidate_id}")
        print(f"  Name: {fields.get('surname')}, {fields.get('first_name')}")
        print(f"  Born: {fields.get('birth_date')}")
        print(f"  Score: {match.weighted_score:.1f}")
        matched = [name for name, hit in match.match_criteria.items() if hit]
        print(f"  Matches: {', '.join(matched) if matched else 'none'}")
        print()


def cmd_similarity(args: argparse.Namespace) -> None:
    print(f"{string_similarity(args.a, args.b):.4f}")


def main(argv=None):
    # Load .env if present (INTAKE_API_BASE_URL, INTAKE_LOG_LEVEL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="intake", description="Person intake tools")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    val = subparsers.add_parser("validate", help="Check every wizard step of a person record JSON")
    val.add_argument("--record", required=True, help="Path to person record JSON")
    val.set_defaults(func=cmd_validate)

    dup = subparsers.add_parser("check-duplicates", help="Score candidate records against a person record")
    dup.add_argument("--record", required=True, help="Path to pending person record JSON")
    dup.add_argument("--candidates", required=True, help="Path to JSON list of candidate records")
    dup.add_argument("--threshold", type=float, help="Minimum score to report (default: INTAKE_DUPLICATE_THRESHOLD or 70)")
    dup.set_defaults(func=cmd_check_duplicates)

    sim = subparsers.add_parser("similarity", help="Levenshtein similarity of two strings")
    sim.add_argument("a")
    sim.add_argument("b")
    sim.set_defaults(func=cmd_similarity)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        config = IntakeConfig.from_env()
        get_logger(level=config.log_level, log_dir=config.log_dir)
        args.config = config
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
