"""Tests for CLI configuration module."""

import json

import pytest

from cli.config import Config
from common.exceptions import ConfigurationError
from common.types import FinalityRequirement, SelectionMode, TrustFilter


def test_config_creates_default_file(tmp_path):
    """Test that config file is created with defaults if missing."""
    config_path = tmp_path / '.shardline' / 'config.json'
    config = Config(config_path)

    assert config_path.exists()
    assert config.data['replicas'] == 2
    assert config.data['finality'] == 'network-confirmed'
    assert config.data['trust'] == 'trusted-only'
    assert config.data['fragment_size'] == 400 * 1024 * 1024
    assert 'api_token' not in config.data


def test_config_loads_existing_file(tmp_path):
    """Test loading existing config file merged over defaults."""
    config_path = tmp_path / '.shardline' / 'config.json'
    config_path.parent.mkdir(parents=True)
    with open(config_path, 'w') as f:
        json.dump({'indexer_url': 'http://indexer.example:9000', 'replicas': 3}, f)

    config = Config(config_path)

    assert config.data['indexer_url'] == 'http://indexer.example:9000'
    assert config.data['replicas'] == 3
    assert config.data['max_retries'] == 3


def test_config_handles_corrupted_file(tmp_path):
    """Test recovery from corrupted config file."""
    config_path = tmp_path / '.shardline' / 'config.json'
    config_path.parent.mkdir(parents=True)
    with open(config_path, 'w') as f:
        f.write('{ invalid json content')

    config = Config(config_path)

    assert config.data['replicas'] == 2
    assert config_path.with_suffix('.json.bak').exists()


def test_api_token_from_environment(temp_config, monkeypatch):
    monkeypatch.delenv('SHARDLINE_API_TOKEN', raising=False)
    temp_config.data['api_token'] = 'stored'
    assert temp_config.get_api_token() == 'stored'

    monkeypatch.setenv('SHARDLINE_API_TOKEN', 'from-env')
    assert temp_config.get_api_token() == 'from-env'


def test_save_persists_changes(temp_config):
    temp_config.data['replicas'] = 5
    temp_config.save()

    with open(temp_config.config_path) as f:
        assert json.load(f)['replicas'] == 5


def test_transfer_config_override_fragment_size(temp_config):
    config = temp_config.transfer_config(fragment_size=1024)

    assert config.fragment_size == 1024
    assert config.upload_task_size == temp_config.data['upload_task_size']


def test_transfer_config_rejects_invalid_values(temp_config):
    temp_config.data['max_inflight_tasks'] = 0
    with pytest.raises(ConfigurationError):
        temp_config.transfer_config()

    temp_config.data['max_inflight_tasks'] = 'many'
    with pytest.raises(ConfigurationError):
        temp_config.transfer_config()


def test_replication_policy_defaults_and_overrides(temp_config):
    policy = temp_config.replication_policy()
    assert policy.replica_count == 2
    assert policy.finality == FinalityRequirement.NETWORK_CONFIRMED
    assert policy.trust_filter == TrustFilter.TRUSTED_ONLY
    assert policy.selection_mode == SelectionMode.MIN_LATENCY

    policy = temp_config.replication_policy(replicas=1, finality='on-submission', mode='round-robin')
    assert policy.replica_count == 1
    assert policy.finality == FinalityRequirement.ON_SUBMISSION
    assert policy.selection_mode == SelectionMode.ROUND_ROBIN


def test_replication_policy_rejects_unknown_value(temp_config):
    temp_config.data['trust'] = 'anyone'
    with pytest.raises(ConfigurationError):
        temp_config.replication_policy()
