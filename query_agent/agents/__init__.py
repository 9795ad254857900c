"""
Agents Module - tool bridge, orchestration loop and output validation.
"""

from .orchestrator import OrchestrationLoop
from .validator import ResponseValidator

__all__ = ["OrchestrationLoop", "ResponseValidator"]
