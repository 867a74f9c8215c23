#!/usr/bin/env python3
"""
Evaluate trained ensemble models on a labelled test set.

Model files are dealt round-robin to worker processes; the gathered metrics
are printed, written to a plain-text results file and optionally to JSON, a
comparison CSV and confusion matrix plots.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from loan_ensemble.data.loading import load_feature_matrix
from loan_ensemble.exceptions import LoanEnsembleError
from loan_ensemble.models.classifiers import MODEL_FILENAMES, MODEL_TYPES
from loan_ensemble.utils.config import ConfigManager
from loan_ensemble.utils.evaluation import ModelEvaluator, evaluate_distributed, format_gathered
from loan_ensemble.utils.logging import get_logger, setup_logging


def parse_arguments():
    parser = argparse.ArgumentParser(
        description="Evaluate loan approval models on a test set",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("test_data", type=str, help="Processed CSV with the label column")
    parser.add_argument(
        "models",
        type=str,
        nargs='*',
        help="Model files; defaults to the three models in the models directory"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default="config/default_config.yaml",
        help="Path to configuration file"
    )
    parser.add_argument("--models-dir", type=str, help="Directory holding the trained models")
    parser.add_argument("--world-size", "-w", type=int, default=3, help="Worker processes")
    parser.add_argument("--in-process", action="store_true", help="Evaluate in this process")
    parser.add_argument("--results-file", type=str, help="Plain-text results file")
    parser.add_argument("--json", type=str, help="Also write the results as JSON")
    parser.add_argument("--comparison-csv", type=str, help="Write a model comparison table")
    parser.add_argument("--plots-dir", type=str, help="Save confusion matrix plots here")
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
    logger = get_logger("evaluate")

    try:
        config = ConfigManager(args.config)
        models_dir = Path(args.models_dir or config.get_data_paths()['models_dir'])
        model_paths = args.models or [str(models_dir / MODEL_FILENAMES[t]) for t in MODEL_TYPES]
        results_file = args.results_file or config.get(
            'evaluation.results_file', 'evaluation_results.txt'
        )

        data = load_feature_matrix(args.test_data, config.get('data.label_column', 5))
        outcome = evaluate_distributed(
            model_paths, data, world_size=args.world_size, use_processes=not args.in_process
        )

        for path, error in outcome.errors.items():
            print(f"Error evaluating {path}: {error}")
        if not outcome.metrics:
            logger.error("No model could be evaluated")
            return 1

        print(format_gathered(outcome.metrics))

        evaluator = ModelEvaluator()
        evaluator.save_report(outcome.metrics, results_file)
        if args.json:
            evaluator.save_report_json(outcome.metrics, args.json)
        if args.comparison_csv:
            evaluator.compare_models(outcome.metrics, save_path=args.comparison_csv)
        if args.plots_dir:
            for metrics in outcome.metrics:
                plot_path = Path(args.plots_dir) / f"{Path(metrics.model_name).stem}_confusion.png"
                evaluator.plot_confusion_matrix(metrics, save_path=plot_path)

        print(f"Results written to {results_file}")
        return 1 if outcome.errors else 0

    except KeyboardInterrupt:
        print("\nEvaluation interrupted by user")
        return 130
    except (LoanEnsembleError, OSError) as e:
        logger.error(f"Evaluation failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
