import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

from claudio.config.schema import BridgeConfig
from claudio.constants import DEFAULT_CONFIG_PATH
from claudio.utils import expand_env_vars

logger = logging.getLogger(__name__)


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if hasattr(model, "model_extra") and model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def resolve_config_path(path: Optional[Path] = None) -> Path:
    """Resolve the config file path (explicit arg > CLAUDIO_CONFIG_PATH > default)."""
    if path is not None:
        return path.expanduser()
    env_path = os.getenv("CLAUDIO_CONFIG_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return Path(DEFAULT_CONFIG_PATH).expanduser()


def load_dotenv_file() -> None:
    """Load .env (CLAUDIO_ENV_PATH override, else ./.env)."""
    env_path = os.getenv("CLAUDIO_ENV_PATH")
    dotenv_path = Path(env_path).expanduser() if env_path else Path.cwd() / ".env"
    load_dotenv(dotenv_path)


def _apply_env_overrides(model: BridgeConfig) -> BridgeConfig:
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if token:
        model.telegram.bot_token = token.strip()

    chat_id = os.getenv("TELEGRAM_CHAT_ID")
    if chat_id:
        try:
            model.telegram.chat_id = int(chat_id)
        except ValueError:
            logger.warning("Ignoring non-numeric TELEGRAM_CHAT_ID=%r", chat_id)
    return model


def load_config(path: Path) -> BridgeConfig:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the claudio.yml file.

    Returns:
        The validated configuration model. A missing or unreadable file
        yields defaults.
    """
    if not path.exists():
        return BridgeConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except Exception as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return BridgeConfig()

    expanded = expand_env_vars(raw)
    model = BridgeConfig.model_validate(expanded)
    _warn_unknown_keys(model, "root", path)
    return model


def load_bridge_config(path: Optional[Path] = None) -> BridgeConfig:
    """Load .env, the YAML config, and environment overrides, in that order."""
    load_dotenv_file()
    config_path = resolve_config_path(path)
    return _apply_env_overrides(load_config(config_path))
