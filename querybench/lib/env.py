"""Environment references in benchmark configuration files.

Storage URIs, the cluster URI and query parameters may name variables as
``${STORAGE_ACCOUNT}`` or ``$STORAGE_ACCOUNT``; they are resolved when the
file is loaded. Values can come from a .env file (python-dotenv).
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from querybench.lib.errors import ConfigurationError

__all__ = ["expand_config", "expand_env_vars", "load_env_file"]

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load variables from a .env file.

    With no path, python-dotenv searches the working directory and its
    parents. Returns True if a file was found and loaded.
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: str, *, field: str) -> str:
    """Resolve every variable reference in one configuration value.

    Raises:
        ConfigurationError: a referenced variable is not set

    Example:
        >>> os.environ["STORAGE_ACCOUNT"] = "logsacct"
        >>> expand_env_vars("https://${STORAGE_ACCOUNT}.blob.core.windows.net/raw", field="source")
        'https://logsacct.blob.core.windows.net/raw'
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ConfigurationError(
                f"{field} references unset environment variable {var_name}",
                field=field,
                value=value,
                suggestion=f"Export {var_name} or pass a .env file with --env-file",
            )
        return env_value

    return ENV_VAR_PATTERN.sub(replacer, value)


def _expand_value(value: Any, field: str) -> Any:
    if isinstance(value, str):
        return expand_env_vars(value, field=field)
    if isinstance(value, dict):
        return expand_config(value, prefix=field)
    if isinstance(value, list):
        return [_expand_value(item, f"{field}[{idx}]") for idx, item in enumerate(value)]
    return value


def expand_config(data: Dict[str, Any], *, prefix: str = "") -> Dict[str, Any]:
    """Return a copy of a loaded configuration with string values resolved.

    Errors name the offending value by its path, e.g. ``queries[1].source``.
    """
    return {
        key: _expand_value(value, f"{prefix}.{key}" if prefix else str(key))
        for key, value in data.items()
    }
