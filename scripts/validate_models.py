#!/usr/bin/env python3
"""
Check trained model files on disk.

Reports size, leading header bytes and checksum of each file, and flags
files that are missing, empty or inconsistent with their header.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from loan_ensemble.models.persistence import validate_model_file


def parse_arguments():
    parser = argparse.ArgumentParser(description="Validate loan approval model files")
    parser.add_argument("models", type=str, nargs='+', help="Model files to check")
    parser.add_argument(
        "--header-size",
        type=int,
        default=100,
        help="Number of leading bytes to read"
    )
    parser.add_argument("--json", action="store_true", help="Print reports as JSON")
    return parser.parse_args()


def main():
    args = parse_arguments()
    reports = [validate_model_file(path, args.header_size) for path in args.models]

    if args.json:
        print(json.dumps([report.to_dict() for report in reports], indent=2))
    else:
        for report in reports:
            print(f"Validating model: {report.path}")
            print(f"  {'OK' if report.valid else 'INVALID'}: {report.message}")
            if report.header_hex:
                print(f"  Header: {report.header_hex}")
                print(f"  SHA-256: {report.file_hash}")

    invalid = [report for report in reports if not report.valid]
    if invalid:
        print(f"{len(invalid)} of {len(reports)} model files failed validation")
        return 1
    print("All models validated successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
