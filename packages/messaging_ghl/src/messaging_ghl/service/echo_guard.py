"""
Echo guard for messages we add to GHL ourselves.

Workflow sends are copied into the GHL conversation as outbound messages.
GHL then delivers that copy to our conversation-provider webhook like any
message an agent typed. GHL's provider webhook carries no field we can set
and read back, so the copy is tagged with an invisible suffix and the
webhook drops anything carrying it.
"""

ECHO_MARKER = "\u200b\u200c\u200b"


def mark(text: str) -> str:
    if text.endswith(ECHO_MARKER):
        return text
    return f"{text}{ECHO_MARKER}"


def is_echo(text: str | None) -> bool:
    return bool(text) and text.endswith(ECHO_MARKER)
