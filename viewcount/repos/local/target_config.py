"""
Local YAML-based implementation of TargetConfigurationRepository.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

import yaml

from viewcount.repositories import TargetConfigurationRepository

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.config/viewcount/targets.yaml"


def _parse_env_ids(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


class LocalTargetConfigurationRepository(TargetConfigurationRepository):
    """
    Loads the tracked video ids from a YAML file.

    The file holds a ``videos`` list whose entries are either plain ids or
    mappings with an ``id`` and an optional ``enabled`` flag::

        videos:
          - dQw4w9WgXcQ
          - id: 9bZkp7q19f0
            enabled: false

    When the file is missing or yields no ids, the comma-separated
    ``TARGET_VIDEO_IDS`` environment variable is used instead.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_var: str = "TARGET_VIDEO_IDS",
    ):
        """
        Initialize with path to configuration file.

        Args:
            config_path: Path to YAML configuration file, supports ~
                expansion. Defaults to VIEWCOUNT_CONFIG_PATH or
                ~/.config/viewcount/targets.yaml
            env_var: Environment variable used as fallback
        """
        if config_path is None:
            config_path = os.environ.get(
                "VIEWCOUNT_CONFIG_PATH", DEFAULT_CONFIG_PATH
            )
        self.config_path = Path(config_path).expanduser()
        self.env_var = env_var
        logger.debug(
            f"Initialized LocalTargetConfigurationRepository with path: "
            f"{self.config_path}"
        )

    async def get_target_ids(self) -> List[str]:
        ids = self._load_from_file()
        if not ids:
            raw = os.environ.get(self.env_var, "")
            ids = _parse_env_ids(raw)
            if ids:
                logger.info(
                    f"Loaded {len(ids)} target videos from {self.env_var}"
                )
        if not ids:
            logger.warning("No target videos configured")
        return list(dict.fromkeys(ids))

    def _load_from_file(self) -> List[str]:
        if not self.config_path.exists():
            logger.warning(
                f"Configuration file not found: {self.config_path}"
            )
            return []

        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(
                f"Failed to load configuration from {self.config_path}: {e}"
            )
            return []

        if not isinstance(config_data, dict):
            logger.error(
                f"Configuration file must contain a YAML dictionary: "
                f"{self.config_path}"
            )
            return []

        entries = config_data.get("videos")
        if not isinstance(entries, list):
            logger.error(
                f"'videos' must be a list in configuration file: "
                f"{self.config_path}"
            )
            return []

        ids = []
        for entry in entries:
            if isinstance(entry, str):
                ids.append(entry.strip())
            elif isinstance(entry, dict) and entry.get("id"):
                if entry.get("enabled", True):
                    ids.append(str(entry["id"]).strip())
            else:
                logger.error(f"Ignoring invalid video entry: {entry!r}")

        logger.info(
            f"Loaded {len(ids)} target videos from {self.config_path}"
        )
        return [i for i in ids if i]
