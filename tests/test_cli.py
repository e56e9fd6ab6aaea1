"""
Tests for the command line interface and environment configuration.
"""

import json
import os
import random
import sys
from datetime import date, timedelta
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import cli
from config import EngineConfig
from errors import ValidationError
from scaling import reset_cache

REFERENCE = date(2026, 11, 19)


class TestGenerateSeedDates:
    def test_count_and_range(self):
        dates = cli.generate_seed_dates(500, REFERENCE, random.Random(1))

        assert len(dates) == 500
        assert all(d >= REFERENCE for d in dates)
        assert max(dates) <= REFERENCE + timedelta(days=3650)

    def test_deterministic_for_seed(self):
        first = cli.generate_seed_dates(50, REFERENCE, random.Random(7))
        second = cli.generate_seed_dates(50, REFERENCE, random.Random(7))
        assert first == second

    def test_distribution_shape(self):
        dates = cli.generate_seed_dates(2000, REFERENCE, random.Random(3))
        offsets = [(d - REFERENCE).days for d in dates]

        near = sum(1 for o in offsets if o < 90) / len(offsets)
        far = [o for o in offsets if o >= 365]
        assert 0.35 < near < 0.45
        # The far tier lands on whole-year multiples only
        assert all(o % 365 == 0 for o in far)


class TestCommands:
    @pytest.fixture(autouse=True)
    def memory_env(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "memory")
        monkeypatch.setenv("IDENTITY_SALT", "cli-salt")
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.delenv("TURNSTILE_SECRET_KEY", raising=False)
        reset_cache()
        with patch.object(cli, "load_dotenv"), patch.object(cli, "_configure_logging"):
            yield
        reset_cache()

    def _run(self, *argv):
        with patch.object(sys, "argv", ["date-consensus", *argv]):
            with pytest.raises(SystemExit) as exc_info:
                cli.main()
        return exc_info.value.code

    def test_seed(self, capsys):
        assert self._run("seed", "--count", "20", "--seed", "5") == 0
        output = capsys.readouterr().out
        assert "Seeded 20 predictions" in output
        assert "Ledger now holds 20" in output

    def test_stats(self, capsys):
        assert self._run("stats") == 0
        output = json.loads(capsys.readouterr().out)
        assert output["aggregate"]["total_count"] == 0
        assert output["status"]["status"] == "Gathering Data"
        assert output["sentiment"]["optimism_score"] == 0.0

    def test_check(self, capsys):
        assert self._run("check") == 0
        assert "All checks passed!" in capsys.readouterr().out

    def test_check_fails_without_salt(self, monkeypatch, capsys):
        monkeypatch.setenv("IDENTITY_SALT", "")
        assert self._run("check") == 1
        assert "IDENTITY_SALT not set" in capsys.readouterr().out

    def test_info(self, capsys):
        assert self._run("info") == 0
        output = capsys.readouterr().out
        assert f"Version: {cli.__version__}" in output
        assert "IDENTITY_SALT: configured" in output
        assert "cli-salt" not in output

    def test_no_command(self):
        assert self._run() == 1


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.reference_date == REFERENCE
        assert config.minimum_sample_size == 50
        assert config.cache_ttl_seconds == 300
        assert config.weight_policy.reduced_weight == 0.3
        assert config.status_bands.delay_likely_max == 180

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("REFERENCE_DATE", "2027-03-01")
        monkeypatch.setenv("IDENTITY_SALT", "pepper")
        monkeypatch.setenv("STATS_CACHE_TTL", "60")
        monkeypatch.setenv("MIN_SAMPLE_SIZE", "10")
        monkeypatch.setenv("STATUS_ON_TRACK_DAYS", "30")
        monkeypatch.setenv("WEIGHT_FULL_YEARS", "2")

        config = EngineConfig.from_env()
        assert config.reference_date == date(2027, 3, 1)
        assert config.identity_salt == "pepper"
        assert config.cache_ttl_seconds == 60
        assert config.minimum_sample_size == 10
        assert config.status_bands.on_track_max == 30
        assert config.weight_policy.full_weight_years == 2

    def test_invalid_reference_date(self, monkeypatch):
        monkeypatch.setenv("REFERENCE_DATE", "someday")
        with pytest.raises(ValidationError):
            EngineConfig.from_env()

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            EngineConfig(min_date=date(2030, 1, 1), max_date=date(2020, 1, 1))
