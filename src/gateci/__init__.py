from .dsl import job, sh, action, after, after_success, after_completion, wf, JobBuilder, build
from .dag import JobGraph, build_graph
from .errors import ConfigurationError, ConditionError, ReportingFailure
from .loader import load_graph, load_workflow
from .model import JobDef, Need, Result, Run, Step, TriggerContext, Workflow
from .runner import plan, run_pipeline

__all__ = [
    "job", "sh", "action", "after", "after_success", "after_completion", "wf", "JobBuilder", "build",
    "JobGraph", "build_graph",
    "ConfigurationError", "ConditionError", "ReportingFailure",
    "load_graph", "load_workflow",
    "JobDef", "Need", "Result", "Run", "Step", "TriggerContext", "Workflow",
    "plan", "run_pipeline",
]
