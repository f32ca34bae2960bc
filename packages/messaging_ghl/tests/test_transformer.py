"""
Tests for the GHL message transformer.
"""

from datetime import datetime, timezone

import pytest

from messaging_ghl.contracts.ghl import ERROR_CONTACT_ID, GhlWebhook, TextMessage, UrlFileMessage
from messaging_ghl.contracts.greenapi import parse_greenapi_webhook
from messaging_ghl.errors import TransformError
from messaging_ghl.transform.transformer import UNSUPPORTED_MESSAGE_TEXT, GhlTransformer


def incoming(message_data, sender_data=None, **extra):
    payload = {
        "typeWebhook": "incomingMessageReceived",
        "instanceData": {"idInstance": 1101000001, "wid": "5511999999999@c.us"},
        "timestamp": 1704067200,
        "idMessage": "MSG1",
        "senderData": sender_data
        or {
            "chatId": "5511888888888@c.us",
            "sender": "5511888888888@c.us",
            "chatName": "Maria",
            "senderName": "Maria",
        },
        "messageData": message_data,
    }
    payload.update(extra)
    return parse_greenapi_webhook(payload)


def ghl(**fields):
    payload = {
        "locationId": "loc_123",
        "messageId": "ghl_msg_1",
        "type": "SMS",
        "phone": "+5511888888888",
        "conversationProviderId": "provider_abc",
    }
    payload.update(fields)
    return GhlWebhook.model_validate(payload)


@pytest.fixture
def transformer():
    return GhlTransformer()


class TestToPlatformMessage:
    """GREEN-API notification -> GHL inbound message."""

    def test_text_message(self, transformer):
        """Plain text passes through."""
        webhook = incoming({"typeMessage": "textMessage", "textMessageData": {"textMessage": "Hello"}})
        message = transformer.to_platform_message(webhook)

        assert message.message == "Hello"
        assert message.attachments == []
        assert message.direction == "inbound"
        assert message.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_extended_text_message(self, transformer):
        webhook = incoming(
            {"typeMessage": "extendedTextMessage", "extendedTextMessageData": {"text": "see https://x.io"}}
        )
        assert transformer.to_platform_message(webhook).message == "see https://x.io"

    def test_image_with_caption(self, transformer):
        """Media becomes an attachment and the caption the text."""
        webhook = incoming(
            {
                "typeMessage": "imageMessage",
                "fileMessageData": {
                    "downloadUrl": "https://cdn.example.com/a.jpg",
                    "caption": "look",
                    "fileName": "a.jpg",
                    "mimeType": "image/jpeg",
                },
            }
        )
        message = transformer.to_platform_message(webhook)

        assert message.message == "look"
        assert len(message.attachments) == 1
        assert message.attachments[0].url == "https://cdn.example.com/a.jpg"
        assert message.attachments[0].mime_type == "image/jpeg"

    def test_document_without_caption(self, transformer):
        """Media without caption gets a placeholder text."""
        webhook = incoming(
            {
                "typeMessage": "documentMessage",
                "fileMessageData": {"downloadUrl": "https://cdn.example.com/a.pdf"},
            }
        )
        assert transformer.to_platform_message(webhook).message == "Received a document file"

    def test_location(self, transformer):
        webhook = incoming(
            {
                "typeMessage": "locationMessage",
                "locationMessageData": {"nameLocation": "Office", "latitude": -23.5, "longitude": -46.6},
            }
        )
        text = transformer.to_platform_message(webhook).message

        assert "📍 Location: Office" in text
        assert "https://www.google.com/maps?q=-23.5,-46.6" in text

    def test_contact_uses_waid(self, transformer):
        vcard = "BEGIN:VCARD\nFN:Joao\nTEL;type=CELL;waid=5511777777777:+55 11 77777-7777\nEND:VCARD"
        webhook = incoming(
            {"typeMessage": "contactMessage", "contactMessageData": {"displayName": "Joao", "vcard": vcard}}
        )
        text = transformer.to_platform_message(webhook).message

        assert "Name: Joao" in text
        assert "Phone: +5511777777777" in text

    def test_poll(self, transformer):
        webhook = incoming(
            {
                "typeMessage": "pollMessage",
                "pollMessageData": {
                    "name": "Lunch?",
                    "options": [{"optionName": "Yes"}, {"optionName": "No"}],
                    "multipleAnswers": False,
                },
            }
        )
        text = transformer.to_platform_message(webhook).message

        assert text.startswith("📊 User sent a poll: Lunch?")
        assert "1. Yes" in text
        assert "(Single answer only)" in text

    def test_deleted_message(self, transformer):
        webhook = incoming({"typeMessage": "deletedMessage", "deletedMessageData": {"stanzaId": "X1"}})
        assert transformer.to_platform_message(webhook).message == "🗑️ User deleted a message (ID: X1)"

    def test_unknown_message_type(self, transformer):
        """Unknown kinds are reported as unsupported, not dropped."""
        webhook = incoming({"typeMessage": "reactionMessage"})
        assert transformer.to_platform_message(webhook).message == UNSUPPORTED_MESSAGE_TEXT

    def test_group_message_prefix(self, transformer):
        """Group messages carry the sender name and phone."""
        webhook = incoming(
            {"typeMessage": "textMessage", "textMessageData": {"textMessage": "hi all"}},
            sender_data={
                "chatId": "120363025000000000@g.us",
                "sender": "5511888888888@c.us",
                "chatName": "Team",
                "senderName": "Maria",
            },
        )
        text = transformer.to_platform_message(webhook).message

        assert text.startswith("Maria (+5511888888888):")
        assert text.endswith("hi all")

    def test_incoming_call(self, transformer):
        webhook = parse_greenapi_webhook(
            {
                "typeWebhook": "incomingCall",
                "instanceData": {"idInstance": 1101000001},
                "from": "5511888888888@c.us",
                "status": "missed",
                "timestamp": 1704067200,
            }
        )
        text = transformer.to_platform_message(webhook).message
        assert text == "📞 Missed call from 5511888888888 (caller ended call)"

    def test_unsupported_webhook_type(self, transformer):
        """Other webhook types yield an error marker instead of raising."""
        webhook = parse_greenapi_webhook(
            {"typeWebhook": "deviceInfo", "instanceData": {"idInstance": 1101000001}}
        )
        message = transformer.to_platform_message(webhook)

        assert message.is_error
        assert message.contact_id == ERROR_CONTACT_ID
        assert message.error == "UNSUPPORTED_WEBHOOK_TYPE:deviceInfo"


VCARD_ANA = "BEGIN:VCARD\nFN:Ana\nTEL;type=CELL;waid=5511777777777:+55 11 77777-7777\nEND:VCARD"


class TestMessageKinds:
    """Every supported typeMessage renders its markers."""

    def test_sticker_defaults(self, transformer):
        """Stickers without file metadata are sent as webp images."""
        webhook = incoming(
            {"typeMessage": "stickerMessage", "fileMessageData": {"downloadUrl": "https://cdn.example.com/s"}}
        )
        message = transformer.to_platform_message(webhook)

        assert message.message == "Received a sticker"
        assert message.attachments[0].url == "https://cdn.example.com/s"
        assert message.attachments[0].file_name == "sticker.webp"
        assert message.attachments[0].mime_type == "image/webp"

    @pytest.mark.parametrize("type_message, kind", [("videoMessage", "video"), ("audioMessage", "audio")])
    def test_video_and_audio(self, transformer, type_message, kind):
        webhook = incoming(
            {
                "typeMessage": type_message,
                "fileMessageData": {"downloadUrl": "https://cdn.example.com/f", "mimeType": f"{kind}/mp4"},
            }
        )
        message = transformer.to_platform_message(webhook)

        assert message.message == f"Received a {kind} file"
        assert message.attachments[0].mime_type == f"{kind}/mp4"

    @pytest.mark.parametrize(
        "message_data, markers",
        [
            (
                {"typeMessage": "quotedMessage", "extendedTextMessageData": {"text": "agreed", "stanzaId": "Q1"}},
                ["agreed"],
            ),
            (
                {
                    "typeMessage": "contactsArrayMessage",
                    "messageData": {
                        "contacts": [{"displayName": "Ana", "vcard": VCARD_ANA}, {"displayName": "Bia", "vcard": ""}]
                    },
                },
                ["User shared multiple contacts:", "👤 Ana (+5511777777777)", "👤 Bia"],
            ),
            (
                {
                    "typeMessage": "pollUpdateMessage",
                    "pollMessageData": {
                        "name": "Lunch?",
                        "votes": [
                            {"optionName": "A", "optionVoters": ["1@c.us", "2@c.us"]},
                            {"optionName": "B", "optionVoters": []},
                        ],
                    },
                },
                ['Poll "Lunch?" was updated.', "- A: 2 vote(s)", "- B: 0 vote(s)"],
            ),
            (
                {"typeMessage": "editedMessage", "editedMessageData": {"textMessage": "fixed", "stanzaId": "E1"}},
                ['✏️ User edited a message to: "fixed" (Original ID: E1)'],
            ),
            (
                {
                    "typeMessage": "buttonsMessage",
                    "buttonsMessage": {
                        "contentText": "Choose",
                        "buttons": [{"buttonText": "One"}, {"buttonText": "Two"}],
                        "footer": "Thanks",
                    },
                },
                ["🔘 User sent a message with buttons:", "Choose", "• One", "• Two", "Footer: Thanks"],
            ),
            (
                {
                    "typeMessage": "listMessage",
                    "listMessage": {
                        "contentText": "Menu today",
                        "sections": [
                            {"title": "Food", "rows": [{"title": "Pizza", "description": "Large"}, {"title": "Soup"}]}
                        ],
                        "footer": "Bye",
                    },
                },
                ["📝 User sent a list message:", "Food:", "  • Pizza: Large", "  • Soup", "Footer: Bye"],
            ),
            (
                {
                    "typeMessage": "templateMessage",
                    "templateMessage": {
                        "contentText": "Your order shipped",
                        "buttons": [
                            {"urlButton": {"displayText": "Track"}},
                            {"callButton": {"displayText": "Support"}},
                            {"quickReplyButton": {"displayText": "Thanks"}},
                        ],
                        "footer": "Shop",
                    },
                },
                [
                    "📋 User sent a template message:",
                    "• Link: Track",
                    "• Call: Support",
                    "• Reply: Thanks",
                    "Footer: Shop",
                ],
            ),
            (
                {"typeMessage": "groupInviteMessage", "groupInviteMessageData": {"groupName": "Friends", "caption": "Join"}},
                ['👥 User sent a group invitation for "Friends".', "Caption: Join"],
            ),
        ],
    )
    def test_markers(self, transformer, message_data, markers):
        text = transformer.to_platform_message(incoming(message_data)).message

        for marker in markers:
            assert marker in text

    def test_group_sender_prefix_format(self, transformer):
        webhook = incoming(
            {"typeMessage": "textMessage", "textMessageData": {"textMessage": "Hi"}},
            sender_data={
                "chatId": "120363025000000000@g.us",
                "sender": "5511888888888@c.us",
                "senderName": "Alice",
            },
        )
        assert transformer.to_platform_message(webhook).message == "Alice (+5511888888888):\n\n Hi"


class TestToGreenApiMessage:
    """GHL provider webhook -> GREEN-API send."""

    def test_text(self, transformer):
        outbound = transformer.to_greenapi_message(ghl(message="Hi"))

        assert isinstance(outbound, TextMessage)
        assert outbound.chat_id == "5511888888888@c.us"
        assert outbound.message == "Hi"

    def test_attachment_becomes_url_file(self, transformer):
        """First attachment is sent by URL with a timestamped file name."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        outbound = transformer.to_greenapi_message(
            ghl(message="invoice", attachments=["https://cdn.example.com/inv.pdf"]),
            now=now,
        )

        assert isinstance(outbound, UrlFileMessage)
        assert outbound.url == "https://cdn.example.com/inv.pdf"
        assert outbound.file_name == "1704067200000_ghl_msg_1"
        assert outbound.caption == "invoice"

    def test_group_phone(self, transformer):
        """Long phone values are treated as group ids."""
        outbound = transformer.to_greenapi_message(ghl(phone="120363025000000000", message="hey"))
        assert outbound.chat_id == "120363025000000000@g.us"

    def test_rejects_non_sms(self, transformer):
        with pytest.raises(TransformError) as exc_info:
            transformer.to_greenapi_message(ghl(type="Email", message="Hi"))
        assert exc_info.value.code == "UNSUPPORTED_TYPE"

    def test_rejects_missing_phone(self, transformer):
        with pytest.raises(TransformError):
            transformer.to_greenapi_message(ghl(phone=None, message="Hi"))

    def test_rejects_empty(self, transformer):
        """Neither text nor attachments."""
        with pytest.raises(TransformError) as exc_info:
            transformer.to_greenapi_message(ghl(message=None))
        assert exc_info.value.code == "EMPTY_MESSAGE"
