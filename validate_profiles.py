from __future__ import annotations

import argparse
import sys
from pathlib import Path

from saimosen.protocols import DEFAULT_PROFILES, ValidationIssue, validate_profiles, validate_registry_file


def _format_issue(issue: ValidationIssue) -> str:
    return f"[{issue.level}] {issue.location}: {issue.message}"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Validate device profile (register map) definitions")
    parser.add_argument(
        "registry",
        type=Path,
        nargs="?",
        help="Path to a profile file (TOML/JSON/YAML); the built-in profiles are checked when omitted",
    )
    parser.add_argument(
        "--warnings-as-errors",
        action="store_true",
        help="Exit with status 1 if warnings are encountered",
    )
    args = parser.parse_args(argv)

    if args.registry is None:
        result = validate_profiles(DEFAULT_PROFILES)
    else:
        result = validate_registry_file(args.registry)
    errors = result.errors
    warnings = result.warnings

    for issue in result.issues:
        print(_format_issue(issue))

    print(f"Summary: {len(errors)} error(s), {len(warnings)} warning(s)")

    if errors or (args.warnings_as_errors and warnings):
        if not errors and warnings:
            print("Warnings treated as errors")
        return 1

    print("Validation OK")
    return 0


if __name__ == "__main__":
    sys.exit(main())
