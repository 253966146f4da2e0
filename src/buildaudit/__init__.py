from .dsl import sh, matrix, pipeline, build_and_audit, build_and_audit_steps
from .runner import run_pipeline, run_workflow, load_workflow
from .model import Step, RunContext, StepResult, PipelineResult, Workflow
from .triggers import Triggers

__all__ = [
    "sh", "matrix", "pipeline", "build_and_audit", "build_and_audit_steps",
    "run_pipeline", "run_workflow", "load_workflow",
    "Step", "RunContext", "StepResult", "PipelineResult", "Workflow", "Triggers",
]
