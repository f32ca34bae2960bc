"""
Bridge services

Webhook dispatch, workflow actions, instance management and status reporting.
"""

from messaging_ghl.service.bootstrap import BridgeServices
from messaging_ghl.service.dispatcher import DispatchResult, DispatchStatus, WebhookDispatcher
from messaging_ghl.service.instances import InstanceService
from messaging_ghl.service.status_reporter import StatusReporter
from messaging_ghl.service.workflow import WorkflowActionExecutor, WorkflowActionResult

__all__ = [
    "BridgeServices",
    "DispatchResult",
    "DispatchStatus",
    "InstanceService",
    "StatusReporter",
    "WebhookDispatcher",
    "WorkflowActionExecutor",
    "WorkflowActionResult",
]
