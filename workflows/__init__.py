"""Workflows for intake, distribution and run tracking."""

from .distribution import DistributionResult, expected_period, run_distribution
from .intake import IntakeResult, run_intake
from .run_log import LogEntry, RunLog, RunState
from .runner import RunGuard, guarded_run, run_pipeline

__all__ = [
    'DistributionResult',
    'expected_period',
    'run_distribution',
    'IntakeResult',
    'run_intake',
    'LogEntry',
    'RunLog',
    'RunState',
    'RunGuard',
    'guarded_run',
    'run_pipeline',
]
