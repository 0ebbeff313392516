"""
Built-in platform actions.

Each action validates its config against a Pydantic schema and hands a
PlatformCommand to a CommandSink. The business logic behind a command
(freezing the order, sending the email) lives in the platform services
consuming the sink, not here.
"""

import logging
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal, Optional, Protocol
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from automation_engine.actions.base import ActionSignal, SchemaActionHandler
from automation_engine.core.errors import ActionError
from automation_engine.core.models import CamelModel
from automation_engine.template.resolver import render_config

logger = logging.getLogger(__name__)

Role = Literal["ADMIN", "COMPLIANCE", "SUPER_ADMIN"]
Priority = Literal["LOW", "NORMAL", "HIGH", "URGENT"]
Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]


class ActionConfig(CamelModel):
    """Base for action config schemas. Unknown keys (editor metadata) are ignored."""

    model_config = ConfigDict(extra="ignore")


# ==================== Config Schemas ====================

class FreezeOrderConfig(ActionConfig):
    immediate_freeze: bool = True
    freeze_duration: Literal["INDEFINITE", "24H", "48H", "7D", "30D", "CUSTOM"] = "24H"
    custom_duration_hours: Optional[int] = Field(default=None, ge=1, le=720)
    reason: str = Field(..., min_length=1)
    reason_category: Literal[
        "SUSPICIOUS_ACTIVITY",
        "AML_ALERT",
        "MANUAL_REVIEW",
        "FRAUD_INVESTIGATION",
        "COMPLIANCE_CHECK",
        "OTHER",
    ]
    notify_customer: bool = True
    notification_template: Optional[str] = None
    auto_unfreeze_enabled: bool = False
    require_approval_to_unfreeze: bool = True
    approver_role: Role = "COMPLIANCE"


class RejectTransactionConfig(ActionConfig):
    rejection_type: Literal["HARD", "SOFT"] = "HARD"
    reason_category: Literal[
        "AML_SANCTIONS",
        "HIGH_RISK_COUNTRY",
        "VELOCITY_LIMIT",
        "INSUFFICIENT_KYC",
        "MANUAL_REVIEW_FAILED",
        "FRAUD_SUSPECTED",
        "OTHER",
    ]
    custom_reason: Optional[str] = None
    risk_score: Optional[float] = Field(default=None, ge=0, le=100)
    notify_customer: bool = True
    process_refund: bool = False
    refund_method: Literal["SAME", "ALTERNATIVE", "MANUAL"] = "SAME"
    add_to_blacklist: bool = False
    blacklist_days: Optional[int] = Field(default=None, ge=1, le=365)


class RequestDocumentConfig(ActionConfig):
    document_types: list[
        Literal[
            "PROOF_OF_ADDRESS",
            "BANK_STATEMENT",
            "SOURCE_OF_FUNDS",
            "TAX_RETURN",
            "UTILITY_BILL",
            "PAYSLIP",
            "PHOTO_ID",
            "SELFIE",
            "OTHER",
        ]
    ] = Field(..., min_length=1)
    due_date: Literal["3D", "7D", "14D", "30D", "CUSTOM"] = "7D"
    custom_due_days: Optional[int] = Field(default=None, ge=1, le=90)
    priority: Priority = "NORMAL"
    custom_message: Optional[str] = None
    include_upload_link: bool = True
    reminder_after_days: int = Field(default=3, ge=1, le=30)


class Approver(CamelModel):
    role: Role
    min_approvals: int = Field(default=1, ge=1)
    specific_user_id: Optional[str] = None


class RequireApprovalConfig(ActionConfig):
    approval_type: Literal["SEQUENTIAL", "PARALLEL", "QUORUM"] = "SEQUENTIAL"
    required_approvers: list[Approver] = Field(..., min_length=1)
    timeout: int = Field(default=24, ge=1, le=168, description="Hours")
    auto_approve_on_timeout: bool = False
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    on_approve: Literal["CONTINUE", "COMPLETE", "CUSTOM"] = "CONTINUE"
    on_reject: Literal["CANCEL", "FREEZE", "ESCALATE", "CUSTOM"] = "CANCEL"
    on_timeout: Literal["ESCALATE", "CANCEL", "AUTO_APPROVE", "CUSTOM"] = "ESCALATE"


class Recipient(CamelModel):
    type: Literal["ROLE", "USER", "EMAIL"]
    value: str
    cc: bool = False


class SendNotificationConfig(ActionConfig):
    recipients: list[Recipient] = Field(..., min_length=1)
    channels: list[Literal["EMAIL", "IN_APP", "SMS", "SLACK", "TELEGRAM"]] = Field(..., min_length=1)
    template: Optional[str] = None
    subject: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    priority: Priority = "NORMAL"
    send_immediately: bool = True
    delay_minutes: int = Field(default=0, ge=0, le=1440)


class FlagForReviewConfig(ActionConfig):
    flag_type: Literal[
        "MANUAL_REVIEW",
        "AML_INVESTIGATION",
        "FRAUD_CHECK",
        "DOCUMENT_VERIFICATION",
        "RISK_ASSESSMENT",
    ]
    severity: Severity = "MEDIUM"
    priority: Priority = "NORMAL"
    reason: str = Field(..., min_length=1)
    assign_role: Optional[Role] = None
    sla_hours: int = Field(default=24, ge=1, le=168)
    block_transaction: bool = False


class AutoApproveConfig(ActionConfig):
    approval_reason: str = "Auto-approved based on conditions"
    risk_score: Optional[float] = Field(default=None, ge=0, le=100)
    bypass_manual_review: bool = True
    reason_category: Literal[
        "LOW_RISK_SCORE",
        "TRUSTED_CUSTOMER",
        "SMALL_AMOUNT",
        "WHITELISTED",
        "VERIFIED_USER",
    ] = "LOW_RISK_SCORE"
    note: Optional[str] = None
    notify_customer: bool = True


class EscalateToComplianceConfig(ActionConfig):
    escalation_type: Literal[
        "AML_ALERT",
        "SANCTIONS_HIT",
        "HIGH_RISK_TRANSACTION",
        "FRAUD_SUSPECTED",
        "KYC_ISSUE",
        "REGULATORY_REPORTING",
        "OTHER",
    ]
    severity: Severity = "HIGH"
    urgency: Literal["LOW", "NORMAL", "HIGH", "IMMEDIATE"] = "HIGH"
    reason: str = Field(..., min_length=1)
    sla_hours: int = Field(default=4, ge=1, le=48)
    block_all_transactions: bool = True
    freeze_account: bool = False
    create_case: bool = True


# ==================== Command Sink ====================

class PlatformCommand(CamelModel):
    """A request for the platform to carry out an action."""

    id: UUID = Field(default_factory=uuid4)
    action_type: str
    event_type: Optional[str] = None
    entity_id: Optional[str] = None
    workflow_id: Optional[UUID] = None
    node_id: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CommandSink(Protocol):
    """Destination for platform commands."""

    async def publish(self, command: PlatformCommand) -> str:
        """Publish a command, returning a delivery id."""
        ...


class InMemoryCommandSink:
    """Collects commands in memory. Used by tests and local runs."""

    def __init__(self) -> None:
        self.commands: list[PlatformCommand] = []

    async def publish(self, command: PlatformCommand) -> str:
        self.commands.append(command)
        return str(command.id)

    def of_type(self, action_type: str) -> list[PlatformCommand]:
        return [command for command in self.commands if command.action_type == action_type]

    def clear(self) -> None:
        self.commands.clear()


# ==================== Handlers ====================

class PlatformActionHandler(SchemaActionHandler):
    """Resolves templates, validates the config and publishes a PlatformCommand."""

    def __init__(self, sink: CommandSink, **kwargs: Any):
        super().__init__(**kwargs)
        self.sink = sink

    async def execute(
        self,
        config: dict[str, Any],
        context: dict[str, Any],
        signal: ActionSignal,
    ) -> dict[str, Any]:
        # Text fields may reference the event context, e.g. "Order {{orderId}} frozen"
        parsed = self.parse_config(render_config(config, context))
        command = PlatformCommand(
            action_type=self.action_type,
            event_type=signal.event_type,
            entity_id=signal.entity_id,
            workflow_id=signal.workflow_id,
            node_id=signal.node_id,
            config=parsed.model_dump(mode="json", by_alias=True),
        )

        if signal.dry_run:
            return {
                "dryRun": True,
                "actionType": self.action_type,
                "command": command.model_dump(mode="json", by_alias=True),
            }

        try:
            delivery_id = await self.sink.publish(command)
        except (ConnectionError, OSError) as e:
            raise ActionError(f"Failed to publish {self.action_type} command: {e}", retryable=True) from e

        logger.info(
            f"Published {self.action_type} command {command.id} "
            f"for {signal.event_type}:{signal.entity_id} (workflow {signal.workflow_id}, node {signal.node_id})"
        )
        return {"commandId": str(command.id), "deliveryId": delivery_id, "actionType": self.action_type}


class FreezeOrderAction(PlatformActionHandler):
    action_type: ClassVar[str] = "FREEZE_ORDER"
    description: ClassVar[str] = "Freeze an order pending review"
    config_model: ClassVar[type[BaseModel]] = FreezeOrderConfig


class RejectTransactionAction(PlatformActionHandler):
    action_type: ClassVar[str] = "REJECT_TRANSACTION"
    description: ClassVar[str] = "Reject the transaction"
    config_model: ClassVar[type[BaseModel]] = RejectTransactionConfig


class RequestDocumentAction(PlatformActionHandler):
    action_type: ClassVar[str] = "REQUEST_DOCUMENT"
    description: ClassVar[str] = "Ask the customer for documents"
    config_model: ClassVar[type[BaseModel]] = RequestDocumentConfig


class RequireApprovalAction(PlatformActionHandler):
    action_type: ClassVar[str] = "REQUIRE_APPROVAL"
    description: ClassVar[str] = "Open an approval request"
    config_model: ClassVar[type[BaseModel]] = RequireApprovalConfig


class SendNotificationAction(PlatformActionHandler):
    action_type: ClassVar[str] = "SEND_NOTIFICATION"
    description: ClassVar[str] = "Notify users, roles or addresses"
    config_model: ClassVar[type[BaseModel]] = SendNotificationConfig


class FlagForReviewAction(PlatformActionHandler):
    action_type: ClassVar[str] = "FLAG_FOR_REVIEW"
    description: ClassVar[str] = "Put the entity in the review queue"
    config_model: ClassVar[type[BaseModel]] = FlagForReviewConfig


class AutoApproveAction(PlatformActionHandler):
    action_type: ClassVar[str] = "AUTO_APPROVE"
    description: ClassVar[str] = "Approve without manual review"
    config_model: ClassVar[type[BaseModel]] = AutoApproveConfig


class EscalateToComplianceAction(PlatformActionHandler):
    action_type: ClassVar[str] = "ESCALATE_TO_COMPLIANCE"
    description: ClassVar[str] = "Escalate to the compliance team"
    config_model: ClassVar[type[BaseModel]] = EscalateToComplianceConfig


PLATFORM_ACTIONS: tuple[type[PlatformActionHandler], ...] = (
    FreezeOrderAction,
    RejectTransactionAction,
    RequestDocumentAction,
    RequireApprovalAction,
    SendNotificationAction,
    FlagForReviewAction,
    AutoApproveAction,
    EscalateToComplianceAction,
)
