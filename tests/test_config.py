"""Tests for settings, key layout and logging helpers"""
import logging
from datetime import timedelta

import pytest

from mlm.config import EngineSettings
from mlm.db import KVKeys
from mlm.logging import get_logger, log_elapsed, sanitize_id_for_logging


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings()

        assert settings.metrics_ttl == timedelta(hours=1)
        assert settings.batch_size == 20
        assert settings.max_upline_hops == 100
        assert settings.order_window == timedelta(days=30)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("METRICS_TTL_SECONDS", "600")
        monkeypatch.setenv("METRICS_BATCH_SIZE", "5")
        monkeypatch.setenv("MAX_UPLINE_HOPS", "12")
        monkeypatch.setenv("ORDER_WINDOW_DAYS", "7")

        settings = EngineSettings.from_env()

        assert settings.metrics_ttl == timedelta(minutes=10)
        assert settings.batch_size == 5
        assert settings.max_upline_hops == 12
        assert settings.order_window == timedelta(days=7)

    @pytest.mark.parametrize("raw", ["abc", "0", "-4", ""])
    def test_from_env_ignores_bad_values(self, monkeypatch, raw):
        monkeypatch.setenv("METRICS_BATCH_SIZE", raw)
        assert EngineSettings.from_env().batch_size == 20

    @pytest.mark.parametrize(
        "kwargs",
        [{"batch_size": 0}, {"max_upline_hops": 0}, {"metrics_ttl": timedelta(0)}],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineSettings(**kwargs)


class TestKVKeys:
    def test_key_layout(self):
        assert KVKeys.partner_key("A") == "user:id:A"
        assert KVKeys.rank_key("A") == "rank:user:A"
        assert KVKeys.metrics_key("A") == "user_metrics:A"
        assert KVKeys.users_page_key(2, "10-20", "rank") == "users_page:2:10-20:rank"

    def test_partner_keys_share_enumeration_prefix(self):
        assert KVKeys.partner_key("A").startswith(KVKeys.USER)
        assert not KVKeys.metrics_key("A").startswith(KVKeys.USER)
        assert not KVKeys.users_page_key(1).startswith(KVKeys.USER)


class TestSanitizeId:
    def test_short_id_unchanged(self):
        assert sanitize_id_for_logging("abc") == "abc"

    def test_empty(self):
        assert sanitize_id_for_logging(None) == "N/A"
        assert sanitize_id_for_logging("") == "N/A"

    def test_truncates(self):
        assert sanitize_id_for_logging("x" * 40) == "x" * 16 + "..."

    def test_escapes_line_breaks(self):
        assert sanitize_id_for_logging("a\nb", max_length=40) == "a\\nb"


class TestLogElapsed:
    def test_logs_duration(self, caplog):
        logger = get_logger("mlm.tests")
        with caplog.at_level(logging.INFO, logger="mlm.tests"):
            with log_elapsed(logger, "Metrics batches"):
                pass

        assert any(
            r.getMessage().startswith("Metrics batches took") and r.getMessage().endswith("ms")
            for r in caplog.records
        )

    def test_logs_even_when_block_raises(self, caplog):
        logger = get_logger("mlm.tests")
        with caplog.at_level(logging.INFO, logger="mlm.tests"):
            with pytest.raises(RuntimeError):
                with log_elapsed(logger, "Audit"):
                    raise RuntimeError("boom")

        assert any(r.getMessage().startswith("Audit took") for r in caplog.records)
