"""Operator-facing text, keyboard layout and command aliases."""

from __future__ import annotations

from enum import Enum

REGISTER_CHANNEL_LABEL = "Add Cloud Storage Channel"
UPLOAD_LABEL = "📤 Upload From Drive"
RESTORE_LABEL = "📥 Restore Images"
HELP_LABEL = "Help"

KEYBOARD: list[list[str]] = [
    [REGISTER_CHANNEL_LABEL],
    [UPLOAD_LABEL],
    [RESTORE_LABEL],
    [HELP_LABEL],
]

HELP_TEXT = (
    "This bot helps you forward files to private storage channels.\n\n"
    '- Press "Add Cloud Storage Channel" and forward a message from that channel.\n'
    '- Press "Upload From Drive" to scan your local disk and send images.\n'
    '- Press "Restore Images" to download backed-up files from the cloud.\n'
    "- After that, any file or image you send here will be forwarded to the channel(s)."
)


class Command(str, Enum):
    START = "start"
    REGISTER_CHANNEL = "register-channel"
    UPLOAD = "upload"
    RESTORE = "restore"
    HELP = "help"


# Lower-cased text (leading "/" stripped) -> command
COMMAND_ALIASES: dict[str, Command] = {
    "start": Command.START,
    "register-channel": Command.REGISTER_CHANNEL,
    "register_channel": Command.REGISTER_CHANNEL,
    REGISTER_CHANNEL_LABEL.lower(): Command.REGISTER_CHANNEL,
    "upload": Command.UPLOAD,
    UPLOAD_LABEL.lower(): Command.UPLOAD,
    "restore": Command.RESTORE,
    RESTORE_LABEL.lower(): Command.RESTORE,
    "help": Command.HELP,
}


def parse_command(text: str | None) -> Command | None:
    """Map free text to a :class:`Command`; ``None`` when unrecognised."""
    if not text:
        return None
    normalized = text.strip().lower()
    if normalized.startswith("/"):
        # "/start@my_bot" in group chats
        normalized = normalized[1:].split("@", 1)[0]
    return COMMAND_ALIASES.get(normalized)


WELCOME_TEXT = "Welcome! What do you want to do?"
REGISTER_PROMPT_TEXT = (
    "🔗 Please forward a message from the private channel you want to use for storage."
)
UPLOAD_ACK_TEXT = "⏳ Scanning drive and uploading images..."
RESTORE_ACK_TEXT = "⏳ Restoring images from your cloud storage..."
UNKNOWN_COMMAND_TEXT = "Please use the keyboard options or type /start."
FORWARD_REQUIRED_TEXT = (
    "❌ Please forward a message from the channel — not type a message.\nTry again."
)
UNEXPECTED_STATE_TEXT = "Unexpected state. Resetting. Type /start to begin."
CHANNEL_REGISTERED_TEXT = (
    "✅ Channel registered! ID: `{channel_id}`\n"
    "All future uploads will be forwarded to this channel."
)
CHANNEL_ALREADY_REGISTERED_TEXT = (
    "✅ Channel `{channel_id}` is already registered.\n"
    "All future uploads will be forwarded to this channel."
)
UNEXPECTED_FORWARD_TEXT = "✅ Got forwarded message, but not expecting it. No action taken."
