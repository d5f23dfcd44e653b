"""
Purpose:
    - Load the [tool.query-snapshot] table from pyproject.toml
    - Apply QSNAP_* environment overrides
    - Validate the merged result into a SnapshotConfig
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from query_snapshot.config.configs import SnapshotConfig
from query_snapshot.errors.errors import SnapshotConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "QSNAP_"
TOOL_TABLE = "query-snapshot"


def validation_error_parser(error: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "path": ".".join(map(str, err["loc"])),
            "message": err["msg"],
            "error_type": err["type"],
        }
        for err in error.errors()
    ]


class ConfigLoader:
    """
    Config-loader; defaults < pyproject.toml < environment.
    """

    def __init__(self, base_dir: str | Path = ".", environ: Optional[Mapping[str, str]] = None) -> None:
        self._base_dir = Path(base_dir)
        self._environ = os.environ if environ is None else environ

    def load_file(self, file_name: str = "pyproject.toml") -> dict[str, Any]:
        path = Path(file_name)
        if not path.is_absolute():
            path = self._base_dir / file_name

        if not path.exists():
            logger.debug(f"[query-snapshot] No {path}, using defaults")
            return {}

        with path.open("rb") as f:
            data = tomllib.load(f)
        table = data.get("tool", {}).get(TOOL_TABLE, {})
        # toml keys use dashes, model fields use underscores
        return {str(k).replace("-", "_"): v for k, v in table.items()}

    def load_env(self) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for name in SnapshotConfig.model_fields:
            env_var = f"{ENV_PREFIX}{name.upper()}"
            if env_var in self._environ:
                overrides[name] = self._environ[env_var]
        return overrides

    def load(self, file_name: str = "pyproject.toml") -> SnapshotConfig:
        merged = {**self.load_file(file_name), **self.load_env()}
        try:
            cfg = SnapshotConfig(**merged)
        except ValidationError as e:
            errors = validation_error_parser(e)
            first = errors[0] if errors else {"path": None, "message": str(e)}
            raise SnapshotConfigurationError(
                f"Invalid query snapshot configuration: {first['message']}",
                field=first["path"],
                component="ConfigLoader",
                details={"errors": errors},
            ) from e
        except TypeError as e:
            raise SnapshotConfigurationError(
                f"Invalid query snapshot configuration: {e}",
                component="ConfigLoader",
            ) from e

        logger.debug(
            "config_resolved",
            extra={"event": "config_resolved", "keys_total": len(merged)},
        )
        return cfg
