#!/usr/bin/env python3
"""
Training script for the Loan Approval Ensemble.

Trains the random forest, MLP and logistic regression models in three worker
processes, each on its own contiguous block of the processed dataset, and
reports the per-model training times.
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from loan_ensemble.exceptions import LoanEnsembleError
from loan_ensemble.training import TrainingConfig, TrainingOrchestrator
from loan_ensemble.utils.logging import get_logger, setup_logging


def parse_arguments():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Train the loan approval ensemble models",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument(
        "--config", "-c",
        type=str,
        default="config/default_config.yaml",
        help="Path to configuration file"
    )
    config_group.add_argument(
        "--data", "-d",
        type=str,
        help="Processed CSV file (overrides data.processed_data_path)"
    )
    config_group.add_argument(
        "--output-dir", "-o",
        type=str,
        help="Directory for the trained models (overrides training.output_dir)"
    )

    worker_group = parser.add_argument_group('Workers')
    worker_group.add_argument(
        "--world-size", "-w",
        type=int,
        help="Number of worker processes; must equal the number of models"
    )
    worker_group.add_argument(
        "--num-threads", "-t",
        type=int,
        help="Threads per worker process"
    )
    worker_group.add_argument(
        "--in-process",
        action="store_true",
        help="Run the workers sequentially in this process"
    )

    training_group = parser.add_argument_group('Training Parameters')
    training_group.add_argument("--num-trees", type=int, help="Number of forest trees")
    training_group.add_argument("--epochs", "-e", type=int, help="MLP training epochs")
    training_group.add_argument("--iterations", type=int, help="Logistic regression iterations")
    training_group.add_argument("--seed", type=int, help="Seed applied to every model")

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the resolved configuration without training"
    )
    return parser.parse_args()


def build_config(args: argparse.Namespace) -> TrainingConfig:
    """Load the YAML configuration and apply command line overrides."""
    config = TrainingConfig.from_yaml(args.config)

    if args.data:
        config.data_path = args.data
    if args.output_dir:
        config.output_dir = args.output_dir
    if args.world_size is not None:
        config.world_size = args.world_size
    if args.num_threads is not None:
        config.num_threads = args.num_threads
    if args.in_process:
        config.use_processes = False
    if args.num_trees is not None:
        config.forest.num_trees = args.num_trees
    if args.epochs is not None:
        config.network.epochs = args.epochs
    if args.iterations is not None:
        config.linear.max_iterations = args.iterations
    if args.seed is not None:
        config.forest.seed = args.seed
        config.network.seed = args.seed
        config.linear.seed = args.seed

    # replace() re-runs validation on the overridden values.
    return replace(
        config,
        forest=replace(config.forest),
        network=replace(config.network),
        linear=replace(config.linear),
    )


def main():
    """Main training function."""
    args = parse_arguments()
    setup_logging(level=args.log_level)
    logger = get_logger("train")

    orchestrator = None
    try:
        config = build_config(args)

        if args.dry_run:
            print("=== DRY RUN MODE ===")
            print(f"Data: {config.data_path}")
            print(f"Output directory: {config.output_dir}")
            print(f"Workers: {config.world_size} ({', '.join(config.model_assignment)})")
            print(f"Threads per worker: {config.num_threads}")
            print(f"Forest: {config.forest}")
            print(f"MLP: {config.network}")
            print(f"Logistic regression: {config.linear}")
            return 0

        orchestrator = TrainingOrchestrator(config)
        orchestrator.check_world_size()
        orchestrator.run_full_training()
        summary = orchestrator.last_summary

        print("\n=== Training Results ===")
        print(summary.format_timings())
        if summary.fastest_model is not None:
            print(f"Fastest model: {summary.fastest_model}")
        for result in summary.results:
            status = "saved" if result.succeeded else f"FAILED ({result.error})"
            print(f"  rank {result.rank} {result.model_type}: rows "
                  f"[{result.start_row}, {result.stop_row}) {status}")
        return 1 if summary.failed else 0

    except KeyboardInterrupt:
        print("\nTraining interrupted by user")
        return 130
    except (LoanEnsembleError, OSError) as e:
        logger.error(f"Training failed: {e}")
        return 1
    finally:
        if orchestrator is not None:
            orchestrator.close()


if __name__ == "__main__":
    sys.exit(main())
