"""Topic research package: plan, search, synthesize and map subtopics."""

from .research import ResearchPipeline, ResearchRunResult, UserContext
from .config import create_pipeline, load_config

__all__ = [
    "ResearchPipeline",
    "ResearchRunResult",
    "UserContext",
    "create_pipeline",
    "load_config",
]
