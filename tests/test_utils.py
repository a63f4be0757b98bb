"""
Helper and configuration tests
"""

import logging

import pytest

from ranker.core.config import configure_logging, load_settings
from ranker.core.utils import (
    canonical_json,
    content_hash,
    estimate_years,
    first_json_object,
    json_loose,
    parse_years,
    uniq_preserve,
    years_min_from,
)


class TestJsonHelpers:
    def test_first_json_object_ignores_braces_in_strings(self):
        text = 'prefix {"a": "}{", "b": {"c": "\\"}"}} suffix {"d": 1}'
        assert first_json_object(text) == '{"a": "}{", "b": {"c": "\\"}"}}'

    def test_first_json_object_skips_unbalanced(self):
        assert first_json_object("{ oops") is None
        assert first_json_object("") is None

    def test_json_loose_strips_fences(self):
        assert json_loose('```json\n{"score": 1}\n```') == {"score": 1}

    def test_json_loose_raises(self):
        with pytest.raises(ValueError):
            json_loose("no json at all")

    def test_canonical_json_is_order_independent(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1}) == '{"a":[1,2],"b":1}'

    def test_content_hash(self):
        assert content_hash("abc") == content_hash(b"abc")
        assert len(content_hash(b"")) == 64


class TestTextHelpers:
    def test_uniq_preserve(self):
        assert uniq_preserve(["SQL", "sql ", "", "Python", "SQL"]) == ["SQL", "Python"]

    @pytest.mark.parametrize("value,expected", [("5+", 5), ("12 years", 12), (7, 7), ("junk", 0), (None, 0), (True, 0)])
    def test_parse_years(self, value, expected):
        assert parse_years(value) == expected

    def test_years_min_from(self):
        assert years_min_from(["Degree required", "3+ years in sales", "5 yrs"]) == 3
        assert years_min_from(["none"]) is None

    @pytest.mark.parametrize("dates,years", [
        ("2019 - 2023", 4),
        ("Jan 2020 – Jan 2022", 2),
        ("2018 to 2021", 3),
        ("", 0),
        ("sometime", 0),
    ])
    def test_estimate_years(self, dates, years):
        assert estimate_years(dates) == years

    def test_estimate_years_present(self):
        assert estimate_years("2000 - present") >= 20


class TestSettings:
    def test_defaults(self):
        s = load_settings({})
        assert s.parser == "fixture"
        assert s.worker_pool_size == 1
        assert s.auto_run is True
        assert s.llm_enabled is False
        assert s.webhook_verification_enabled is False
        assert "http://localhost:5173" in s.allowed_origins

    def test_env_overrides(self):
        s = load_settings({
            "PARSER": "Remote",
            "MULE_START_URL": "https://mule/start",
            "GOOGLE_API_KEY": "g-key",
            "RANKER_WORKERS": "4",
            "RANKER_AUTO_RUN": "no",
            "LLM_TIMEOUT_SECONDS": "oops",
            "ALLOWED_ORIGINS": "https://app.example.com, http://localhost:3000",
            "CALLBACK_HMAC_SECRET": "s",
        })
        assert s.parser == "remote"
        assert s.idp_start_url == "https://mule/start"
        assert s.gemini_api_key == "g-key" and s.llm_enabled
        assert s.worker_pool_size == 4
        assert s.auto_run is False
        assert s.llm_timeout_seconds == 60.0
        assert s.allowed_origins.count("http://localhost:3000") == 1
        assert "https://app.example.com" in s.allowed_origins
        assert s.webhook_verification_enabled

    def test_worker_pool_at_least_one(self):
        assert load_settings({"RANKER_WORKERS": "0"}).worker_pool_size == 1

    def test_configure_logging_is_idempotent(self):
        root = logging.getLogger()
        configure_logging("WARNING")
        configure_logging("DEBUG")
        assert sum(1 for h in root.handlers if getattr(h, "_ranker", False)) == 1
        assert root.level == logging.DEBUG
