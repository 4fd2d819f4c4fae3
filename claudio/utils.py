"""Small helpers shared across Claudio."""

import os
import re

_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _substitute(match: re.Match[str]) -> str:
    name, default = match.group(1), match.group(2)
    value = os.getenv(name)
    if value is not None:
        return value
    return default if default is not None else match.group(0)


def expand_env_vars(value: object) -> object:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in every string of a parsed YAML tree.

    Unset variables without a default are left as written.
    """
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_substitute, value)
    if isinstance(value, dict):
        return {key: expand_env_vars(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value
