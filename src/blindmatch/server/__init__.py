"""Server-side components for encrypted matching."""
from blindmatch.server.evaluator import (
    MatchingEvaluator,
    TargetStore,
    create_mock_targets,
    evaluate_batch_multiprocess,
)
from blindmatch.server.api import app, create_app, run_server

__all__ = [
    "MatchingEvaluator",
    "TargetStore",
    "create_mock_targets",
    "evaluate_batch_multiprocess",
    "app",
    "create_app",
    "run_server",
]
