"""
GHL Message Transformer

Pure mapping between GREEN-API notifications and GHL conversation messages.
No I/O: contact and location ids are left as placeholders for the dispatcher.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable

from messaging_ghl.contracts.ghl import (
    ERROR_CONTACT_ID,
    ERROR_LOCATION_ID,
    SMS_WEBHOOK_TYPE,
    Attachment,
    GhlWebhook,
    OutboundMessage,
    PlatformMessage,
    TextMessage,
    UrlFileMessage,
)
from messaging_ghl.contracts.greenapi import CallStatus, GreenApiWebhook, WebhookType
from messaging_ghl.errors import TransformError
from messaging_ghl.transform.phone import (
    PRIVATE_CHAT_SUFFIX,
    extract_phone_from_vcard,
    format_chat_id,
    looks_like_group_id,
)

UNSUPPORTED_MESSAGE_TEXT = "User sent an unsupported message type"

MEDIA_MESSAGE_TYPES = ("imageMessage", "videoMessage", "documentMessage", "audioMessage")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9_.-]")

_CALL_TEXTS = {
    CallStatus.OFFER.value: "📞 Incoming call from {caller}",
    CallStatus.PICK_UP.value: "📞 Call answered from {caller}",
    CallStatus.HANG_UP.value: "📞 Call ended by recipient - {caller} (hung up or do not disturb)",
    CallStatus.MISSED.value: "📞 Missed call from {caller} (caller ended call)",
    CallStatus.DECLINED.value: "📞 Call declined from {caller} (timeout)",
}


def sanitize_file_name(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


class GhlTransformer:
    """
    Converts messages between GREEN-API and GHL.

    to_platform_message: GREEN-API webhook -> PlatformMessage (GHL inbound)
    to_greenapi_message: GHL provider webhook -> OutboundMessage (GREEN-API send)
    """

    def __init__(self, logger: logging.Logger | logging.LoggerAdapter | None = None):
        self.logger = logger or logging.getLogger(__name__)
        self._renderers: dict[str, Callable[[dict[str, Any], list[Attachment]], str]] = {
            "textMessage": self._render_text,
            "extendedTextMessage": self._render_extended_text,
            "quotedMessage": self._render_extended_text,
            "stickerMessage": self._render_sticker,
            "locationMessage": self._render_location,
            "contactMessage": self._render_contact,
            "contactsArrayMessage": self._render_contacts_array,
            "pollMessage": self._render_poll,
            "pollUpdateMessage": self._render_poll_update,
            "editedMessage": self._render_edited,
            "deletedMessage": self._render_deleted,
            "buttonsMessage": self._render_buttons,
            "listMessage": self._render_list,
            "templateMessage": self._render_template,
            "groupInviteMessage": self._render_group_invite,
        }
        for media_type in MEDIA_MESSAGE_TYPES:
            self._renderers[media_type] = self._render_media

    # =========================================================================
    # GREEN-API -> GHL
    # =========================================================================

    def to_platform_message(self, webhook: GreenApiWebhook) -> PlatformMessage:
        """
        Render a GREEN-API notification as a GHL inbound message.

        Unsupported webhook types return an error-marker message instead of
        raising so the caller can decide what to do with it.
        """
        if webhook.type_webhook == WebhookType.INCOMING_MESSAGE_RECEIVED.value:
            return self._incoming_message(webhook)

        if webhook.type_webhook == WebhookType.INCOMING_CALL.value:
            return self._incoming_call(webhook)

        self.logger.error(
            f"Cannot transform unsupported GREEN-API webhook type: {webhook.type_webhook}",
            extra={"id_instance": webhook.id_instance},
        )
        return PlatformMessage(
            message=f"Error: Unsupported Green API webhook type {webhook.type_webhook}",
            contact_id=ERROR_CONTACT_ID,
            location_id=ERROR_LOCATION_ID,
            error=f"UNSUPPORTED_WEBHOOK_TYPE:{webhook.type_webhook}",
        )

    def _incoming_message(self, webhook: GreenApiWebhook) -> PlatformMessage:
        message_data = webhook.message_data
        type_message = message_data.get("typeMessage") or ""
        attachments: list[Attachment] = []

        renderer = self._renderers.get(type_message)
        if renderer is None:
            self.logger.warning(
                f"Unsupported GREEN-API message type: {type_message}",
                extra={"id_instance": webhook.id_instance, "id_message": webhook.id_message},
            )
            text = UNSUPPORTED_MESSAGE_TEXT
        else:
            text = renderer(message_data, attachments)

        sender = webhook.sender_data
        if sender is not None and sender.is_group:
            sender_name = sender.sender_name or sender.sender_contact_name or "Unknown"
            sender_phone = sender.sender.split(PRIVATE_CHAT_SUFFIX)[0]
            text = f"{sender_name} (+{sender_phone}):\n\n {text}"

        return PlatformMessage(
            message=text.strip(),
            attachments=attachments,
            timestamp=webhook.timestamp,
        )

    def _incoming_call(self, webhook: GreenApiWebhook) -> PlatformMessage:
        caller = (webhook.call_from or "").replace(PRIVATE_CHAT_SUFFIX, "") or "unknown"
        status = webhook.call_status
        template = _CALL_TEXTS.get(status or "")
        if template:
            text = template.format(caller=caller)
        else:
            text = f"📞 Call event from {caller} - Status: {status}"

        return PlatformMessage(message=text, timestamp=webhook.timestamp)

    # Renderers take messageData and append attachments in place

    def _render_text(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        return (data.get("textMessageData") or {}).get("textMessage") or ""

    def _render_extended_text(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        return (data.get("extendedTextMessageData") or {}).get("text") or ""

    def _render_media(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        file_data = data.get("fileMessageData") or {}
        if file_data.get("downloadUrl"):
            attachments.append(
                Attachment(
                    url=file_data["downloadUrl"],
                    file_name=file_data.get("fileName"),
                    mime_type=file_data.get("mimeType"),
                )
            )
        kind = data["typeMessage"].replace("Message", " file")
        return file_data.get("caption") or f"Received a {kind}"

    def _render_sticker(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        file_data = data.get("fileMessageData") or {}
        if file_data.get("downloadUrl"):
            attachments.append(
                Attachment(
                    url=file_data["downloadUrl"],
                    file_name=file_data.get("fileName") or "sticker.webp",
                    mime_type=file_data.get("mimeType") or "image/webp",
                )
            )
        return file_data.get("caption") or "Received a sticker"

    def _render_location(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        location = data.get("locationMessageData") or {}
        lines = ["User shared a location:\n"]
        if location.get("nameLocation"):
            lines.append(f"📍 Location: {location['nameLocation']}")
        if location.get("address"):
            lines.append(f"📮 Address: {location['address']}")
        lines.append(
            f"📌 Map: https://www.google.com/maps?q={location.get('latitude')},{location.get('longitude')}"
        )
        return "\n".join(lines)

    def _render_contact(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        contact = data.get("contactMessageData") or {}
        phone = extract_phone_from_vcard(contact.get("vcard"))
        lines = ["👤 User shared a contact:"]
        if contact.get("displayName"):
            lines.append(f"Name: {contact['displayName']}")
        if phone:
            lines.append(f"Phone: {phone}")
        return "\n".join(lines)

    def _render_contacts_array(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        contacts = (data.get("messageData") or {}).get("contacts") or []
        lines = []
        for contact in contacts:
            phone = extract_phone_from_vcard(contact.get("vcard"))
            suffix = f" ({phone})" if phone else ""
            lines.append(f"👤 {contact.get('displayName')}{suffix}")
        return "User shared multiple contacts:\n" + "\n".join(lines)

    def _render_poll(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        poll = data.get("pollMessageData") or {}
        lines = [f"📊 User sent a poll: {poll.get('name')}", "Options:"]
        for index, option in enumerate(poll.get("options") or [], start=1):
            lines.append(f"{index}. {option.get('optionName')}")
        lines.append(
            "(Multiple answers allowed)" if poll.get("multipleAnswers") else "(Single answer only)"
        )
        return "\n".join(lines)

    def _render_poll_update(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        poll = data.get("pollMessageData") or {}
        text = f'Poll "{poll.get("name")}" was updated.\nVotes:\n'
        for vote in poll.get("votes") or []:
            voters = vote.get("optionVoters") or []
            text += f"- {vote.get('optionName')}: {len(voters)} vote(s)\n"
        return text

    def _render_edited(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        edited = data.get("editedMessageData") or {}
        new_text = edited.get("textMessage")
        if new_text is None:
            new_text = edited.get("caption") or ""
        return f'✏️ User edited a message to: "{new_text}" (Original ID: {edited.get("stanzaId")})'

    def _render_deleted(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        deleted = data.get("deletedMessageData") or {}
        return f"🗑️ User deleted a message (ID: {deleted.get('stanzaId') or 'unknown'})"

    def _render_buttons(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        buttons = data.get("buttonsMessage") or {}
        button_lines = "\n".join(f"• {b.get('buttonText')}" for b in buttons.get("buttons") or [])
        text = f"🔘 User sent a message with buttons:\n{buttons.get('contentText') or ''}\n\nButtons:\n{button_lines}"
        if buttons.get("footer"):
            text += f"\n\nFooter: {buttons['footer']}"
        return text

    def _render_list(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        list_message = data.get("listMessage") or {}
        sections = []
        for section in list_message.get("sections") or []:
            rows = []
            for row in section.get("rows") or []:
                description = f": {row['description']}" if row.get("description") else ""
                rows.append(f"  • {row.get('title')}{description}")
            sections.append(f"{section.get('title')}:\n" + "\n".join(rows))
        text = f"📝 User sent a list message:\n{list_message.get('contentText') or ''}\n\n" + "\n\n".join(sections)
        if list_message.get("footer"):
            text += f"\n\nFooter: {list_message['footer']}"
        return text

    def _render_template(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        template = data.get("templateMessage") or {}
        actions = []
        for button in template.get("buttons") or []:
            if button.get("urlButton"):
                actions.append(f"• Link: {button['urlButton'].get('displayText')}")
            elif button.get("callButton"):
                actions.append(f"• Call: {button['callButton'].get('displayText')}")
            elif button.get("quickReplyButton"):
                actions.append(f"• Reply: {button['quickReplyButton'].get('displayText')}")
        text = f"📋 User sent a template message:\n{template.get('contentText') or ''}"
        if actions:
            text += "\n\nActions:\n" + "\n".join(actions)
        if template.get("footer"):
            text += f"\n\nFooter: {template['footer']}"
        return text

    def _render_group_invite(self, data: dict[str, Any], attachments: list[Attachment]) -> str:
        invite = data.get("groupInviteMessageData") or {}
        return (
            f'👥 User sent a group invitation for "{invite.get("groupName")}".\n'
            f"Caption: {invite.get('caption') or ''}"
        )

    # =========================================================================
    # GHL -> GREEN-API
    # =========================================================================

    def to_greenapi_message(self, webhook: GhlWebhook, now: datetime | None = None) -> OutboundMessage:
        """
        Turn a GHL SMS provider webhook into a GREEN-API send.

        Args:
            webhook: Parsed GHL webhook
            now: Clock used for attachment file names (defaults to current UTC time)

        Returns:
            UrlFileMessage when the webhook has attachments, TextMessage otherwise

        Raises:
            TransformError: Unsupported type, missing phone, or nothing to send
        """
        if webhook.type != SMS_WEBHOOK_TYPE or not webhook.phone:
            self.logger.error(
                f"Cannot transform GHL webhook. Type: {webhook.type}, has phone: {bool(webhook.phone)}",
                extra={"message_id": webhook.message_id},
            )
            raise TransformError(
                f"Unsupported GHL webhook for GREEN-API. Type: {webhook.type}",
                code="UNSUPPORTED_TYPE",
                details={"type": webhook.type},
            )

        chat_id = format_chat_id(webhook.phone, is_group=looks_like_group_id(webhook.phone))

        if webhook.attachments:
            now = now or datetime.now(timezone.utc)
            stamp = int(now.timestamp() * 1000)
            file_name = sanitize_file_name(f"{stamp}_{webhook.message_id or 'unknown'}")
            if len(webhook.attachments) > 1:
                self.logger.warning(
                    "GHL webhook has several attachments; only the first is sent",
                    extra={"message_id": webhook.message_id, "attachments": len(webhook.attachments)},
                )
            return UrlFileMessage(
                chat_id=chat_id,
                url=webhook.attachments[0],
                file_name=file_name,
                caption=webhook.message or "",
            )

        if webhook.message:
            return TextMessage(chat_id=chat_id, message=webhook.message)

        self.logger.warning(
            "GHL SMS webhook has no text and no attachments",
            extra={"message_id": webhook.message_id},
        )
        raise TransformError(
            "GHL SMS webhook has no message content or attachments",
            code="EMPTY_MESSAGE",
            details={"message_id": webhook.message_id},
        )
