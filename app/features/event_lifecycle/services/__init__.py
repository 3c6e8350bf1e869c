from .pipeline_service import LifecyclePipeline
from .reporting_service import ReportingService
from .scheduler import LifecycleScheduler, PeriodicTask

__all__ = ["LifecyclePipeline", "LifecycleScheduler", "PeriodicTask", "ReportingService"]
