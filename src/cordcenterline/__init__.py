"""Per-subject spinal cord centerline extraction and contrast co-registration."""

from .config import PipelinePolicy, RunPaths, load_pipeline_policy, resolve_run_paths
from .layout import SubjectLayout
from .pipeline import StepResult, check_subject, run_subject

__all__ = [
    "PipelinePolicy",
    "RunPaths",
    "StepResult",
    "SubjectLayout",
    "check_subject",
    "load_pipeline_policy",
    "resolve_run_paths",
    "run_subject",
]
