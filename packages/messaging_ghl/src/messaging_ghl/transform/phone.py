"""
Phone and chat id helpers.

GREEN-API addresses chats as "<digits>@c.us" (private) or "<id>@g.us"
(group). GHL stores phones in E.164-like "+<digits>" form.
"""

import re

PRIVATE_CHAT_SUFFIX = "@c.us"
GROUP_CHAT_SUFFIX = "@g.us"

# GHL passes group chat ids through the phone field; real phones are shorter
GROUP_ID_MIN_LENGTH = 17

_VCARD_WAID = re.compile(r"waid=(\d+)")
_NON_DIGITS = re.compile(r"\D")
_VCARD_TEL = re.compile(r"^TEL[^:]*:(.+)$", re.MULTILINE)


def strip_chat_suffix(value: str) -> str:
    """Drop the @c.us / @g.us suffix from a chat id."""
    return value.split("@", 1)[0]


def normalize_phone(value: str) -> str:
    """
    Normalize a phone or private chat id to "+<number>".

    Idempotent: normalize_phone(normalize_phone(x)) == normalize_phone(x).
    """
    phone = strip_chat_suffix(value.strip())
    if not phone.startswith("+"):
        phone = f"+{phone}"
    return phone


def is_group_chat_id(value: str) -> bool:
    return value.endswith(GROUP_CHAT_SUFFIX)


def looks_like_group_id(phone: str) -> bool:
    return len(phone) >= GROUP_ID_MIN_LENGTH


def format_chat_id(phone: str, is_group: bool | None = None) -> str:
    """
    Build a GREEN-API chat id from a phone number or group id.

    Args:
        phone: "+5511999999999", "5511999999999", or an existing chat id
        is_group: Force group/private; inferred from length when None

    Returns:
        "<digits>@c.us" or "<digits>@g.us"
    """
    phone = phone.strip()
    if phone.endswith(PRIVATE_CHAT_SUFFIX) or phone.endswith(GROUP_CHAT_SUFFIX):
        return phone

    if is_group is None:
        is_group = looks_like_group_id(phone)

    if is_group:
        # Legacy group ids look like "<creator>-<timestamp>"
        group_id = re.sub(r"[^\d-]", "", phone)
        return f"{group_id}{GROUP_CHAT_SUFFIX}"

    digits = _NON_DIGITS.sub("", phone)
    return f"{digits}{PRIVATE_CHAT_SUFFIX}"


def extract_phone_from_vcard(vcard: str | None) -> str | None:
    """
    Pull the phone number out of a vCard shared over WhatsApp.

    Prefers the waid parameter (the WhatsApp number), then the first TEL value.
    """
    if not vcard:
        return None

    match = _VCARD_WAID.search(vcard)
    if match:
        return f"+{match.group(1)}"

    match = _VCARD_TEL.search(vcard)
    if match:
        return match.group(1).strip()

    return None
