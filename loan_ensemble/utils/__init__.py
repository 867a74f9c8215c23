"""Configuration, logging and thread-pool helpers.

Evaluation lives in :mod:`loan_ensemble.utils.evaluation` and is imported
from there directly, since it depends on the model package.
"""

from .config import ConfigManager, config
from .logging import get_logger, setup_logging
from .parallel import (
    get_num_threads,
    parallel_map,
    parallel_reduce,
    reduce_over_chunks,
    set_num_threads,
    split_range,
    thread_count,
)

__all__ = [
    'ConfigManager', 'config',
    'get_logger', 'setup_logging',
    'get_num_threads', 'parallel_map', 'parallel_reduce', 'reduce_over_chunks',
    'set_num_threads', 'split_range', 'thread_count',
]
