"""Configuration management for the Shardline CLI."""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from client.config import TransferConfig
from common.constants import (
    DEFAULT_CONFIG_DIR,
    FINALITY_TIMEOUT_SECONDS,
    FRAGMENT_SIZE_BYTES,
    INDEXER_PORT,
    MAX_INFLIGHT_TASKS,
    MAX_PARALLEL_FRAGMENTS,
    MAX_RETRIES,
    REQUEST_TIMEOUT_SECONDS,
    RETRY_BACKOFF_MULTIPLIER,
    UPLOAD_TASK_SIZE_BYTES,
)
from common.exceptions import ConfigurationError
from common.types import FinalityRequirement, ReplicationPolicy, SelectionMode, TrustFilter

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(DEFAULT_CONFIG_DIR).expanduser() / 'config.json'


class Config:
    """Manages CLI configuration stored in JSON file."""

    DEFAULT_CONFIG = {
        "indexer_url": os.environ.get("SHARDLINE_INDEXER_URL", f"http://localhost:{INDEXER_PORT}"),
        "fragment_size": FRAGMENT_SIZE_BYTES,
        "upload_task_size": UPLOAD_TASK_SIZE_BYTES,
        "max_inflight_tasks": MAX_INFLIGHT_TASKS,
        "max_parallel_fragments": MAX_PARALLEL_FRAGMENTS,
        "timeout": REQUEST_TIMEOUT_SECONDS,
        "finality_timeout": FINALITY_TIMEOUT_SECONDS,
        "max_retries": MAX_RETRIES,
        "retry_backoff_multiplier": RETRY_BACKOFF_MULTIPLIER,
        "fragment_retries": 0,
        "replicas": 2,
        "finality": FinalityRequirement.NETWORK_CONFIRMED.value,
        "trust": TrustFilter.TRUSTED_ONLY.value,
        "mode": SelectionMode.MIN_LATENCY.value,
    }

    def __init__(self, config_path: Path = DEFAULT_CONFIG_PATH):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (typically ~/.shardline/config.json)
        """
        self.config_path = config_path
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, creating defaults if necessary.

        A corrupt file is copied to config.json.bak and defaults are used.

        Returns:
            Configuration dictionary
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            import tempfile
            self.config_path = Path(tempfile.gettempdir()) / '.shardline' / 'config.json'
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
                config = self.DEFAULT_CONFIG.copy()
                config.update(data)
                return config
            except (ValueError, OSError) as e:
                backup_path = self.config_path.with_suffix('.json.bak')
                logger.warning(f"Config {self.config_path} unreadable ({e}), backing up to {backup_path}")
                try:
                    shutil.copy(self.config_path, backup_path)
                except OSError as copy_error:
                    logger.warning(f"Could not back up config: {copy_error}")
                return self.DEFAULT_CONFIG.copy()
        else:
            config = self.DEFAULT_CONFIG.copy()
            try:
                with open(self.config_path, 'w') as f:
                    json.dump(config, f, indent=2)
            except OSError as e:
                logger.warning(f"Could not write default config: {e}")
            return config

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_path, 'w') as f:
                json.dump(self.data, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save config: {e}")

    def get_api_token(self) -> Optional[str]:
        """
        Get the indexer API token.

        SHARDLINE_API_TOKEN overrides the stored value.
        """
        return os.environ.get("SHARDLINE_API_TOKEN") or self.data.get('api_token')

    def transfer_config(self, fragment_size: Optional[int] = None) -> TransferConfig:
        """
        Build a validated TransferConfig.

        Args:
            fragment_size: Overrides the configured fragment size

        Raises:
            ConfigurationError: If a setting is invalid
        """
        try:
            config = TransferConfig(
                indexer_url=str(self.data['indexer_url']),
                api_token=self.get_api_token(),
                fragment_size=int(fragment_size or self.data['fragment_size']),
                upload_task_size=int(self.data['upload_task_size']),
                max_inflight_tasks=int(self.data['max_inflight_tasks']),
                max_parallel_fragments=int(self.data['max_parallel_fragments']),
                request_timeout=float(self.data['timeout']),
                finality_timeout=float(self.data['finality_timeout']),
                max_retries=int(self.data['max_retries']),
                retry_backoff_multiplier=float(self.data['retry_backoff_multiplier']),
                fragment_retries=int(self.data['fragment_retries']),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration in {self.config_path}: {e}") from e
        return config.validate()

    def replication_policy(
        self,
        replicas: Optional[int] = None,
        finality: Optional[str] = None,
        trust: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> ReplicationPolicy:
        """
        Build a ReplicationPolicy from configured defaults and overrides.

        Raises:
            ConfigurationError: If a value is not recognised
        """
        try:
            return ReplicationPolicy(
                replica_count=int(replicas if replicas is not None else self.data['replicas']),
                finality=FinalityRequirement(finality or self.data['finality']),
                selection_mode=SelectionMode(mode or self.data['mode']),
                trust_filter=TrustFilter(trust or self.data['trust']),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid replication settings: {e}") from e
