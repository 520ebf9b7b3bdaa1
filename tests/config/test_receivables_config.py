"""
Tests for configuration loading.

Covers:
- Packaged defaults match the dataclass defaults
- Resolution order: explicit path, RECEIVABLES_CONFIG, defaults.yaml
- Rejection of unknown sections, unknown keys and bad values
- Checksum stability and the RECEIVABLES_CONFIG_TRACE record
"""

from decimal import Decimal

import pytest
import yaml

from receivables_config import (
    DEFAULT_BUCKETS,
    BucketDef,
    ReceivablesConfig,
    compute_checksum,
    get_active_config,
    parse_config,
)


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv("RECEIVABLES_CONFIG", raising=False)


@pytest.fixture
def write_config(tmp_path):
    def _write(data, name="receivables.yaml"):
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


class TestActiveConfig:
    def test_packaged_defaults(self):
        config = get_active_config()

        assert config == ReceivablesConfig()
        assert len(config.aging_buckets) == 5
        assert config.aging_buckets == DEFAULT_BUCKETS
        assert config.checksum

    def test_environment_override(self, monkeypatch, write_config):
        path = write_config({"receivables": {"default_currency": "usd"}})
        monkeypatch.setenv("RECEIVABLES_CONFIG", str(path))

        assert get_active_config().default_currency == "USD"

    def test_explicit_path_wins_over_environment(self, monkeypatch, write_config):
        env_path = write_config({"receivables": {"default_currency": "USD"}}, "env.yaml")
        explicit = write_config({"receivables": {"default_currency": "EUR"}}, "explicit.yaml")
        monkeypatch.setenv("RECEIVABLES_CONFIG", str(env_path))

        assert get_active_config(explicit).default_currency == "EUR"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_trace_record(self, write_config, captured_logs):
        path = write_config({"logging": {"level": "debug"}})
        config = get_active_config(path)

        traces = [r for r in captured_logs() if r["message"] == "RECEIVABLES_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["logger"] == "receivables.config"
        assert traces[0]["config_path"] == str(path)
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["bucket_count"] == 5


class TestParseConfig:
    def test_empty_mapping_keeps_defaults(self):
        assert parse_config({}) == ReceivablesConfig()

    def test_full_document(self):
        config = parse_config({
            "receivables": {
                "default_currency": "USD",
                "high_usage_threshold": "0.9",
                "enforce_credit_limits": False,
                "sync_credit_usage_on_apply": False,
                "lock_timeout_seconds": 3,
            },
            "aging": {"buckets": [
                {"key": "current", "min_days": 0, "max_days": 0},
                {"key": "late", "label": "Late", "min_days": 1},
            ]},
            "database": {"backend": "Memory", "url": "postgresql://db/ar"},
            "logging": {"level": "warning"},
        })

        assert config.high_usage_threshold == Decimal("0.9")
        assert not config.enforce_credit_limits
        assert not config.sync_credit_usage_on_apply
        assert config.lock_timeout_seconds == 3.0
        assert config.aging_buckets == (
            BucketDef("current", "current", 0, 0),
            BucketDef("late", "Late", 1, None),
        )
        assert config.database_url == "postgresql://db/ar"
        assert config.store_backend == "memory"
        assert config.log_level == "WARNING"

    @pytest.mark.parametrize(
        "data",
        [
            {"ledger": {}},
            {"receivables": {"currency": "NIO"}},
            {"receivables": []},
            {"receivables": {"default_currency": "XXX"}},
            {"receivables": {"high_usage_threshold": "lots"}},
            {"receivables": {"high_usage_threshold": 0}},
            {"receivables": {"enforce_credit_limits": "yes"}},
            {"receivables": {"lock_timeout_seconds": 0}},
            {"receivables": {"lock_timeout_seconds": True}},
            {"aging": {"buckets": []}},
            {"aging": {"buckets": [{"key": "x"}]}},
            {"aging": {"buckets": [{"key": "x", "min_days": 10, "max_days": 5}]}},
            {"aging": {"buckets": [{"key": "x", "min_days": -1}]}},
            {"logging": {"level": "LOUD"}},
            {"database": {"backend": "redis"}},
        ],
    )
    def test_invalid_documents_rejected(self, data):
        with pytest.raises(ValueError):
            parse_config(data)

    def test_root_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_config(["receivables"])


class TestChecksum:
    def test_independent_of_key_order(self):
        a = {"receivables": {"default_currency": "NIO", "lock_timeout_seconds": 5}}
        b = {"receivables": {"lock_timeout_seconds": 5, "default_currency": "NIO"}}
        assert compute_checksum(a) == compute_checksum(b)

    def test_changes_with_content(self):
        assert compute_checksum({"logging": {"level": "INFO"}}) != compute_checksum(
            {"logging": {"level": "DEBUG"}}
        )

    def test_not_part_of_equality(self):
        assert parse_config({"logging": {"level": "INFO"}}) == ReceivablesConfig()
