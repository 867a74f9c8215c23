#!/usr/bin/env python3
"""
Interactive loan approval prediction.

Values not given on the command line are prompted for. The application is
normalized with the column statistics of the training data and scored by
every model that could be loaded.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from loan_ensemble.data.preprocessing import load_statistics, statistics_path_for
from loan_ensemble.data.schema import ColumnStatistics, LoanApplication
from loan_ensemble.exceptions import LoanEnsembleError
from loan_ensemble.models.prediction_interface import EnsemblePredictor
from loan_ensemble.utils.config import ConfigManager
from loan_ensemble.utils.logging import get_logger, setup_logging

PROMPTS = {
    'income': ("Enter Income: $", float),
    'credit_score': ("Enter Credit Score (300-850): ", float),
    'loan_amount': ("Enter Loan Amount: $", float),
    'dti_ratio': ("Enter Debt-to-Income Ratio: ", float),
    'employment_status': ("Enter Employment Status (1 = Employed, 0 = Unemployed): ", int),
}


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Predict loan approval with the trained ensemble",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config/default_config.yaml",
        help="Path to configuration file"
    )
    parser.add_argument("--models-dir", type=str, help="Directory holding the trained models")
    parser.add_argument(
        "--stats",
        type=str,
        help="Column statistics JSON written by preprocess_data.py"
    )
    parser.add_argument("--income", type=float)
    parser.add_argument("--credit-score", type=float)
    parser.add_argument("--loan-amount", type=float)
    parser.add_argument("--dti-ratio", type=float)
    parser.add_argument("--employment-status", type=int, choices=[0, 1])
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    return parser.parse_args()


def read_application(args: argparse.Namespace) -> LoanApplication:
    values = {}
    for name, (prompt, cast) in PROMPTS.items():
        value = getattr(args, name)
        if value is None:
            value = cast(input(prompt).strip())
        values[name] = value
    return LoanApplication(**values)


def resolve_statistics(args: argparse.Namespace, config: ConfigManager) -> ColumnStatistics:
    if args.stats:
        return load_statistics(args.stats)
    processed = config.get('data.processed_data_path')
    if processed and statistics_path_for(processed).exists():
        return load_statistics(statistics_path_for(processed))
    configured = config.get('prediction.column_statistics')
    if configured:
        return ColumnStatistics.from_pairs(configured)
    return ColumnStatistics.default()


def main():
    args = parse_arguments()
    setup_logging(level=args.log_level)
    logger = get_logger("predict")

    try:
        config = ConfigManager(args.config)
        models_dir = args.models_dir or config.get('prediction.models_dir', 'models')
        statistics = resolve_statistics(args, config)

        if not args.json:
            print("===== Loan Approval Prediction System =====")
        application = read_application(args)

        predictor = EnsemblePredictor(models_dir, statistics=statistics)
        decision = predictor.predict_application(application)

        if args.json:
            print(json.dumps(decision.to_dict(), indent=2))
        else:
            print()
            print(decision.format())
        return 0

    except KeyboardInterrupt:
        print("\nPrediction interrupted by user")
        return 130
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return 1
    except (LoanEnsembleError, OSError) as e:
        logger.error(f"Prediction failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
