"""Models package."""

from .performance_metric import PerformanceMetric
from .training_example import TrainingExample
