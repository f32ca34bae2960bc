"""
Workflow Action Payloads

Body of the custom workflow action GHL calls to send a WhatsApp message.

GHL action forms send flat fields (button1Type, button1Text, ...). The
payload kind is taken from `data.kind` when present; otherwise it is inferred
from which fields are filled in.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_BUTTONS = 3


class WorkflowActionKind(str, Enum):
    TEXT = "text"
    FILE = "file"
    INTERACTIVE_BUTTONS = "interactiveButtons"
    REPLY_BUTTONS = "replyButtons"


class ButtonType(str, Enum):
    """Interactive button types supported by sendInteractiveButtons."""

    COPY = "copy"
    CALL = "call"
    URL = "url"


@dataclass
class WorkflowButton:
    index: int
    text: str
    type: ButtonType | None = None
    value: str | None = None


class WorkflowActionData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    instance_id: int = Field(..., alias="instanceId")
    kind: WorkflowActionKind | None = None
    message: str | None = None
    url: str | None = None
    file_name: str | None = Field(None, alias="fileName")
    header: str | None = None
    footer: str | None = None

    button1_type: ButtonType | None = Field(None, alias="button1Type")
    button1_text: str | None = Field(None, alias="button1Text")
    button1_value: str | None = Field(None, alias="button1Value")
    button2_type: ButtonType | None = Field(None, alias="button2Type")
    button2_text: str | None = Field(None, alias="button2Text")
    button2_value: str | None = Field(None, alias="button2Value")
    button3_type: ButtonType | None = Field(None, alias="button3Type")
    button3_text: str | None = Field(None, alias="button3Text")
    button3_value: str | None = Field(None, alias="button3Value")

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        # GHL sends "" for every form field the user left empty
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def buttons(self) -> list[WorkflowButton]:
        """Buttons in form order; slots without text are skipped."""
        buttons = []
        for i in range(1, MAX_BUTTONS + 1):
            text = getattr(self, f"button{i}_text")
            if not text:
                continue
            buttons.append(
                WorkflowButton(
                    index=i,
                    text=text,
                    type=getattr(self, f"button{i}_type"),
                    value=getattr(self, f"button{i}_value"),
                )
            )
        return buttons

    def resolve_kind(self) -> WorkflowActionKind:
        """Explicit kind, or the one implied by the populated fields."""
        if self.kind is not None:
            return self.kind
        if self.url and self.file_name:
            return WorkflowActionKind.FILE
        if self.button1_type:
            return WorkflowActionKind.INTERACTIVE_BUTTONS
        if self.button1_text:
            return WorkflowActionKind.REPLY_BUTTONS
        return WorkflowActionKind.TEXT


class WorkflowActionRequest(BaseModel):
    """Body of POST /webhooks/workflow-action."""

    data: WorkflowActionData
    extras: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def location_id(self) -> str | None:
        return self.extras.get("locationId")

    @property
    def contact_id(self) -> str | None:
        return self.extras.get("contactId")
