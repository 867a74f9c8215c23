#!/usr/bin/env python3
"""
Preprocess the raw loan dataset into the numeric training file.

Encodes the categorical columns, imputes missing values with column means,
z-scores the numeric columns and writes the processed CSV together with the
column statistics used by the prediction script.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from loan_ensemble.data.preprocessing import LoanDataPreprocessor
from loan_ensemble.exceptions import LoanEnsembleError
from loan_ensemble.utils.config import ConfigManager
from loan_ensemble.utils.logging import get_logger, setup_logging


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Preprocess the raw loan approval dataset",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config/default_config.yaml",
        help="Path to configuration file"
    )
    parser.add_argument(
        "--input", "-i",
        type=str,
        help="Raw CSV file (overrides data.raw_data_path)"
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        help="Processed CSV file (overrides data.processed_data_path)"
    )
    parser.add_argument(
        "--no-normalize",
        action="store_true",
        help="Keep numeric columns in their original units"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    return parser.parse_args()


def main():
    args = parse_arguments()
    setup_logging(level=args.log_level)
    logger = get_logger("preprocess")

    try:
        config = ConfigManager(args.config)
        paths = config.get_data_paths()
        input_path = args.input or paths['raw_data_path']
        output_path = args.output or paths['processed_data_path']

        preprocessor = LoanDataPreprocessor(normalize=not args.no_normalize)
        result = preprocessor.run(input_path, output_path)

        print("=== Preprocessing Summary ===")
        print(f"Records: {len(result.data)}")
        for column, count in result.missing_counts.items():
            print(f"Missing {column}: {count}")
        print(f"Verified: {'yes' if result.verified else 'no'}")
        print(f"Output: {result.output_path}")
        return 0 if result.verified else 1

    except KeyboardInterrupt:
        print("\nPreprocessing interrupted by user")
        return 130
    except LoanEnsembleError as e:
        logger.error(f"Preprocessing failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
