"""Configuration loading and validation.

Settings are layered: built-in defaults, then ``config/telecloud.json``
(or an explicit path), then environment variables. Bot tokens that are not
set in either place are read from the system keyring (service:
``telecloud``, key: ``bot_tokens``).
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import keyring

from telecloud.models import TelecloudConfig, normalize_channel_id
from telecloud.upload.exceptions import TelecloudError

logger = logging.getLogger(__name__)

SERVICE_NAME = "telecloud"
KEY_NAME = "bot_tokens"

DEFAULT_CONFIG_PATH = Path("config/telecloud.json")

# Environment variable -> TelecloudConfig field
ENV_FIELDS: dict[str, str] = {
    "TELEGRAM_BOT_TOKENS": "bot_tokens",
    "STORAGE_CHANNEL_IDS": "storage_channel_ids",
    "CHAT_IDS": "authorized_sessions",
    "ADMIN_CHAT_ID": "admin_chat_id",
    "DEFAULT_DRIVE_PATH": "scan_root",
    "RESTORE_OUTPUT_PATH": "restore_root",
    "TELECLOUD_SNAPSHOT": "snapshot_path",
    "TELECLOUD_CONCURRENCY": "concurrency",
}

_LIST_FIELDS = {"bot_tokens", "storage_channel_ids", "authorized_sessions"}


class ConfigError(TelecloudError):
    """Configuration is missing or invalid.

    Attributes:
        problems: One human-readable line per problem found.
    """

    def __init__(self, problems: list[str]) -> None:
        super().__init__("Invalid configuration:\n" + "\n".join(f"  - {p}" for p in problems))
        self.problems = problems


def split_list(value: str | list[Any] | None) -> list[str]:
    """Split a comma-separated setting; lists are passed through stripped."""
    if value is None:
        return []
    items = value if isinstance(value, list) else str(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


# ---------------------------------------------------------------------------
# Keyring
# ---------------------------------------------------------------------------


def get_tokens_from_keyring() -> list[str]:
    return split_list(keyring.get_password(SERVICE_NAME, KEY_NAME))


def set_tokens_in_keyring(tokens: list[str]) -> None:
    keyring.set_password(SERVICE_NAME, KEY_NAME, ",".join(tokens))


def remove_tokens_from_keyring() -> bool:
    """Delete stored tokens; returns ``False`` if none were stored."""
    if keyring.get_password(SERVICE_NAME, KEY_NAME) is None:
        return False
    keyring.delete_password(SERVICE_NAME, KEY_NAME)
    return True


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    use_keyring: bool = True,
) -> TelecloudConfig:
    """Build a :class:`TelecloudConfig` from file, environment and keyring.

    Values are coerced but not validated; call :func:`validate` before
    starting the bot or a run.

    Args:
        config_path: JSON file; ``config/telecloud.json`` when ``None``.
            A missing default file is fine, a missing explicit one is not.
        environ: Environment mapping (``os.environ`` when ``None``).
        use_keyring: Fall back to the keyring when no tokens are configured.

    Raises:
        ConfigError: The JSON file is missing (explicit path) or unparsable,
            or a value cannot be coerced.
    """
    environ = os.environ if environ is None else environ
    path = config_path or DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise ConfigError([f"cannot read {path}: {exc}"]) from exc
        if not isinstance(data, dict):
            raise ConfigError([f"{path} must contain a JSON object"])
        logger.debug("Loaded configuration from %s", path)
    elif config_path is not None:
        raise ConfigError([f"config file not found: {path}"])

    field_names = set(TelecloudConfig.__dataclass_fields__)
    raw: dict[str, Any] = {k: v for k, v in data.items() if k in field_names}
    for env_name, field_name in ENV_FIELDS.items():
        value = environ.get(env_name)
        if value is not None and value.strip():
            raw[field_name] = value

    kwargs = _coerce(raw)
    config = TelecloudConfig(**kwargs)

    if not config.bot_tokens and use_keyring:
        config.bot_tokens = get_tokens_from_keyring()
        if config.bot_tokens:
            logger.debug("Using %d bot token(s) from keyring", len(config.bot_tokens))

    return config


def _coerce(raw: dict[str, Any]) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    problems: list[str] = []

    for name, value in raw.items():
        try:
            if name in _LIST_FIELDS:
                items = split_list(value)
                if name == "authorized_sessions":
                    kwargs[name] = [int(item) for item in items]
                elif name == "storage_channel_ids":
                    kwargs[name] = [normalize_channel_id(item) for item in items]
                else:
                    kwargs[name] = items
            elif name == "admin_chat_id":
                kwargs[name] = int(value) if value not in (None, "") else None
            elif name == "concurrency":
                kwargs[name] = int(value) if value not in (None, "") else None
            elif name == "max_attempts":
                kwargs[name] = int(value)
            elif name in ("retry_base_delay", "retry_cap_delay", "report_interval"):
                kwargs[name] = float(value)
            elif name in ("scan_root", "restore_root", "snapshot_path"):
                kwargs[name] = Path(str(value)).expanduser()
            elif name == "scan_extensions":
                kwargs[name] = {
                    ext.lower() if ext.startswith(".") else f".{ext.lower()}"
                    for ext in split_list(value)
                }
            else:
                kwargs[name] = value
        except (TypeError, ValueError) as exc:
            problems.append(f"{name}: cannot parse {value!r} ({exc})")

    if problems:
        raise ConfigError(problems)
    return kwargs


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate(config: TelecloudConfig, *, require_sessions: bool = False) -> None:
    """Check *config* before the core starts.

    Args:
        config: Loaded configuration.
        require_sessions: Also require at least one authorised chat (bot mode).

    Raises:
        ConfigError: Listing every problem found.
    """
    problems: list[str] = []

    if not config.bot_tokens:
        problems.append(
            "no bot tokens: set TELEGRAM_BOT_TOKENS or run "
            "'telecloud config set-tokens TOKEN[,TOKEN...]'"
        )
    for token in config.bot_tokens:
        bot_id, sep, secret = token.partition(":")
        if not sep or not bot_id.isdigit() or not secret:
            problems.append(f"malformed bot token for bot id {bot_id or '?'}")

    for channel_id in config.storage_channel_ids:
        if not isinstance(channel_id, int) and not str(channel_id).startswith("@"):
            problems.append(f"storage channel id {channel_id!r} is neither numeric nor @username")

    if require_sessions and not config.authorized_sessions:
        problems.append("no authorised chats: set CHAT_IDS")

    if config.concurrency is not None and config.concurrency < 1:
        problems.append(f"concurrency must be at least 1 (got {config.concurrency})")
    if config.max_attempts < 1:
        problems.append(f"max_attempts must be at least 1 (got {config.max_attempts})")
    if config.retry_base_delay < 0 or config.retry_cap_delay < 0:
        problems.append("retry delays must not be negative")
    if config.report_interval <= 0:
        problems.append("report_interval must be positive")

    if problems:
        raise ConfigError(problems)
