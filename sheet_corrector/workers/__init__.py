"""
Package Workers: batch execution of the correction pipeline.
"""

from .orchestrator import BatchRun, CorrectionOrchestrator

__all__ = ['BatchRun', 'CorrectionOrchestrator']
