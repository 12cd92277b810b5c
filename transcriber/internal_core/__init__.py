from .config import ServiceConfig, load_config
from .job_registry import JobRegistry, QueueSubscriber

__all__ = ["ServiceConfig", "load_config", "JobRegistry", "QueueSubscriber"]
