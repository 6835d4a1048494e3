from .config import Config, MinimizationConfig, load_config
from .models import MinimizeResult, RequestDescriptor, RequestSpec
from .orchestrator import MinimizationOrchestrator, minimize_request

__all__ = [
    "Config",
    "MinimizationConfig",
    "MinimizeResult",
    "MinimizationOrchestrator",
    "RequestDescriptor",
    "RequestSpec",
    "load_config",
    "minimize_request",
]
