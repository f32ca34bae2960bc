"""
Tests for workflow actions.
"""

import json

import pytest

from messaging_ghl.contracts.workflow import WorkflowActionKind, WorkflowActionRequest
from messaging_ghl.errors import RoutingError, TransformError
from messaging_ghl.persistence.models import InstanceState
from messaging_ghl.service.echo_guard import ECHO_MARKER, is_echo, mark
from messaging_ghl.service.workflow import build_transcript


def action(**data):
    payload = {"instanceId": "1101000001", **data}
    return WorkflowActionRequest.model_validate(
        {"data": payload, "extras": {"locationId": "loc_123", "contactId": "contact_1"}, "meta": {"key": "send"}}
    )


def body(request):
    return json.loads(request.content)


class TestWorkflowActionData:
    """Kind selection from the flat GHL form fields."""

    def test_explicit_kind_wins(self):
        data = action(kind="text", message="hi", url="https://x/f.pdf", fileName="f.pdf").data
        assert data.resolve_kind() == WorkflowActionKind.TEXT

    @pytest.mark.parametrize(
        "fields, expected",
        [
            ({"message": "hi"}, WorkflowActionKind.TEXT),
            ({"url": "https://x/f.pdf", "fileName": "f.pdf"}, WorkflowActionKind.FILE),
            ({"button1Type": "url", "button1Text": "Go", "button1Value": "https://x"}, WorkflowActionKind.INTERACTIVE_BUTTONS),
            ({"button1Text": "Yes"}, WorkflowActionKind.REPLY_BUTTONS),
        ],
    )
    def test_inferred_kind(self, fields, expected):
        assert action(**fields).data.resolve_kind() == expected

    def test_blank_fields_ignored(self):
        """GHL sends empty strings for unused form fields."""
        data = action(message="hi", url="", fileName="", button1Type="", button1Text=" ").data

        assert data.resolve_kind() == WorkflowActionKind.TEXT
        assert data.buttons() == []

    def test_large_instance_id(self):
        assert action().data.instance_id == 1101000001


class TestTranscript:
    def test_interactive_buttons(self):
        data = action(
            header="Offer",
            message="Pick one",
            footer="Thanks",
            button1Type="url",
            button1Text="Visit",
            button1Value="https://x",
            button2Type="call",
            button2Text="Call us",
            button2Value="+5511999999999",
        ).data

        transcript = build_transcript(data, WorkflowActionKind.INTERACTIVE_BUTTONS)

        assert transcript == (
            "Offer\n\nPick one\n\nThanks\n\nButtons:\n1. Visit (https://x)\n2. Call us (+5511999999999)"
        )

    def test_reply_buttons_have_no_values(self):
        data = action(message="Continue?", button1Text="Yes", button2Text="No").data
        assert build_transcript(data, WorkflowActionKind.REPLY_BUTTONS) == "Continue?\n\nButtons:\n1. Yes\n2. No"


class TestEchoGuard:
    def test_marker_round_trip(self):
        marked = "hello" + ECHO_MARKER
        assert is_echo(marked)
        assert mark(marked) == marked
        assert not is_echo("hello")
        assert not is_echo(None)


class TestWorkflowActionExecutor:
    @pytest.mark.asyncio
    async def test_url_button_without_message(self, services, db, tenant, make_instance, greenapi, ghl_api):
        """Scenario E: button1 fields only select interactive buttons; transcript lists the button."""
        make_instance(1101000001)
        request = action(button1Type="url", button1Text="Visit", button1Value="https://x")

        result = await services.workflow_executor(db).execute(request, "loc_123", "+5511888888888")

        assert result.success is True
        assert result.message_id == "ga_buttons_1"
        assert result.warning is None

        sent = body(greenapi.calls("sendInteractiveButtons")[0])
        assert sent["chatId"] == "5511888888888@c.us"
        assert sent["buttons"] == [
            {"type": "url", "buttonId": "1", "buttonText": "Visit", "url": "https://x"}
        ]

        transcript = body(ghl_api.calls("POST", "/conversations/messages")[0])
        assert "Visit (https://x)" in transcript["message"]
        assert transcript["message"].endswith(ECHO_MARKER)
        assert transcript["contactId"] == "contact_1"
        assert transcript["conversationProviderId"] == "provider_abc"

    @pytest.mark.asyncio
    async def test_text(self, services, db, tenant, make_instance, greenapi):
        make_instance(1101000001)

        result = await services.workflow_executor(db).execute(action(message="Hello"), "loc_123", "5511888888888")

        assert result.message_id == "ga_msg_1"
        assert body(greenapi.calls("sendMessage")[0]) == {"chatId": "5511888888888@c.us", "message": "Hello"}

    @pytest.mark.asyncio
    async def test_file(self, services, db, tenant, make_instance, greenapi):
        make_instance(1101000001)
        request = action(url="https://cdn.example.com/f.pdf", fileName="f.pdf", message="Your invoice")

        await services.workflow_executor(db).execute(request, "loc_123", "+5511888888888")

        assert body(greenapi.calls("sendFileByUrl")[0]) == {
            "chatId": "5511888888888@c.us",
            "urlFile": "https://cdn.example.com/f.pdf",
            "fileName": "f.pdf",
            "caption": "Your invoice",
        }

    @pytest.mark.asyncio
    async def test_reply_buttons(self, services, db, tenant, make_instance, greenapi):
        make_instance(1101000001)
        request = action(message="Continue?", footer="Reply below", button1Text="Yes", button2Text="No")

        await services.workflow_executor(db).execute(request, "loc_123", "+5511888888888")

        sent = body(greenapi.calls("sendInteractiveButtonsReply")[0])
        assert sent["body"] == "Continue?"
        assert sent["footer"] == "Reply below"
        assert sent["buttons"] == [
            {"buttonId": "1", "buttonText": "Yes"},
            {"buttonId": "2", "buttonText": "No"},
        ]

    @pytest.mark.asyncio
    async def test_transcript_failure_is_warning(self, services, db, tenant, make_instance, greenapi, ghl_api):
        """The send stands when GHL cannot record the transcript."""
        make_instance(1101000001)
        ghl_api.on("POST", "/contacts/upsert", (500, {"message": "boom"}))

        result = await services.workflow_executor(db).execute(action(message="Hello"), "loc_123", "+5511888888888")

        assert result.success is True
        assert result.warning
        assert len(greenapi.calls("sendMessage")) == 1

    @pytest.mark.asyncio
    async def test_interactive_button_without_value(self, services, db, tenant, make_instance, greenapi):
        """Malformed button combinations are rejected before sending."""
        make_instance(1101000001)
        request = action(button1Type="copy", button1Text="Copy code")

        with pytest.raises(TransformError) as exc_info:
            await services.workflow_executor(db).execute(request, "loc_123", "+5511888888888")

        assert exc_info.value.code == "INVALID_BUTTON"
        assert greenapi.requests == []

    @pytest.mark.asyncio
    async def test_text_without_message(self, services, db, tenant, make_instance, greenapi):
        make_instance(1101000001)

        with pytest.raises(TransformError):
            await services.workflow_executor(db).execute(action(), "loc_123", "+5511888888888")

    @pytest.mark.asyncio
    async def test_instance_of_other_tenant(self, services, db, tenant, make_instance, greenapi):
        make_instance(1101000001)

        with pytest.raises(RoutingError) as exc_info:
            await services.workflow_executor(db).execute(action(message="Hi"), "loc_other", "+5511888888888")

        assert exc_info.value.code == "INSTANCE_TENANT_MISMATCH"
        assert greenapi.requests == []

    @pytest.mark.asyncio
    async def test_unauthorized_instance(self, services, db, tenant, make_instance, greenapi):
        make_instance(1101000001, state=InstanceState.SLEEP_MODE.value)

        with pytest.raises(RoutingError) as exc_info:
            await services.workflow_executor(db).execute(action(message="Hi"), "loc_123", "+5511888888888")

        assert exc_info.value.code == "INSTANCE_NOT_AUTHORIZED"

    @pytest.mark.asyncio
    async def test_unknown_instance(self, services, db, tenant):
        with pytest.raises(RoutingError) as exc_info:
            await services.workflow_executor(db).execute(action(message="Hi"), "loc_123", "+5511888888888")

        assert exc_info.value.code == "INSTANCE_NOT_FOUND"
