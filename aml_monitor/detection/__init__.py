"""
Detection package for the AML velocity monitor.

Re-exports the detector interfaces and the concrete velocity detector so
downstream code can import from `aml_monitor.detection` directly.
"""

from aml_monitor.detection.abstract import AbstractDetector, Detector, assign_alert_ids
from aml_monitor.detection.velocity import VelocityConfig, VelocityDetector

__all__ = [
    # Abstracts
    "AbstractDetector",
    "Detector",
    "assign_alert_ids",
    # Concrete detectors
    "VelocityConfig",
    "VelocityDetector",
]
