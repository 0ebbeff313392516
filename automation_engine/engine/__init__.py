"""Evaluation, dispatch and the workflow service.

Runtime wiring lives in `automation_engine.engine.runtime` and is imported
explicitly, since it depends on the messaging layer.
"""

from automation_engine.engine.dispatcher import TriggerDispatcher
from automation_engine.engine.evaluator import Evaluator
from automation_engine.engine.service import TraceNotFoundError, WorkflowService

__all__ = ["Evaluator", "TraceNotFoundError", "TriggerDispatcher", "WorkflowService"]
