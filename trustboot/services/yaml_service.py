"""YAML file operations service."""

import logging
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger("trustboot")


class YAMLService:
    """Service for YAML file operations."""

    @staticmethod
    def load_yaml(file_path: Path) -> Dict[str, Any]:
        """
        Load YAML file and return as dictionary.

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed YAML content as dictionary

        Raises:
            FileNotFoundError: If file doesn't exist
            yaml.YAMLError: If file is not valid YAML
        """
        if not file_path.exists():
            raise FileNotFoundError(f"YAML file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
                logger.debug(f"Loaded YAML from: {file_path}")
                return data or {}
            except yaml.YAMLError as e:
                logger.error(f"Error parsing YAML file {file_path}: {e}")
                raise

    @staticmethod
    def loads(content: bytes) -> Dict[str, Any]:
        """
        Parse YAML content held in memory.

        Raises:
            ValueError: If the content is not a YAML mapping
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML content: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("YAML content is not a mapping")
        return data

    @staticmethod
    def dumps(data: Dict[str, Any]) -> bytes:
        """Serialize a dictionary to YAML bytes, preserving key order."""
        return yaml.safe_dump(
            data,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        ).encode("utf-8")
