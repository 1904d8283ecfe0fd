#!/usr/bin/env python3
"""
Pytest tests for the usage_tracker utility module.
"""

import json
from unittest.mock import patch

from parley_chat.utils.usage_tracker import MODEL_PRICING, record_usage, load_usage, reset_usage


class TestUsageTracker:
    """Test cases for the usage_tracker utility module."""

    def test_record_usage_new_model(self, tmp_path):
        """Test recording usage for a new model."""
        usage_file = tmp_path / "usage.json"

        with patch('parley_chat.utils.usage_tracker._FILE_PATH', usage_file):
            record_usage("gpt-4o-mini", 100, 50)

            assert usage_file.exists()
            with open(usage_file, 'r') as f:
                data = json.load(f)
            assert data["gpt-4o-mini"]["prompt_tokens"] == 100
            assert data["gpt-4o-mini"]["completion_tokens"] == 50
            assert data["gpt-4o-mini"]["requests"] == 1
            assert data["gpt-4o-mini"]["last_used"] is not None

    def test_record_usage_accumulates(self, tmp_path):
        """Test recording usage for an existing model."""
        usage_file = tmp_path / "usage.json"

        with patch('parley_chat.utils.usage_tracker._FILE_PATH', usage_file):
            record_usage("gpt-4o", 50, 25)
            record_usage("gpt-4o", 30, 15)

            data = load_usage()
            assert data["gpt-4o"]["prompt_tokens"] == 80
            assert data["gpt-4o"]["completion_tokens"] == 40
            assert data["gpt-4o"]["requests"] == 2

    def test_cost_calculation(self, tmp_path):
        """Test that cost follows the pricing table."""
        usage_file = tmp_path / "usage.json"
        prompt_price, completion_price = MODEL_PRICING["gpt-4o"]

        with patch('parley_chat.utils.usage_tracker._FILE_PATH', usage_file):
            record_usage("gpt-4o", 2000, 1000)

            expected = 2 * prompt_price + 1 * completion_price
            assert abs(load_usage()["gpt-4o"]["cost_usd"] - expected) < 1e-9

    def test_unknown_model_costs_nothing(self, tmp_path):
        """Test recording usage for an unknown model."""
        usage_file = tmp_path / "usage.json"

        with patch('parley_chat.utils.usage_tracker._FILE_PATH', usage_file):
            record_usage("local-llama", 100, 50)
            assert load_usage()["local-llama"]["cost_usd"] == 0.0

    def test_load_usage_empty(self, tmp_path):
        """Test loading usage when no data exists."""
        with patch('parley_chat.utils.usage_tracker._FILE_PATH', tmp_path / "missing.json"):
            assert load_usage() == {}

    def test_load_usage_invalid_json(self, tmp_path):
        """Test loading usage with an unreadable file."""
        usage_file = tmp_path / "invalid.json"
        usage_file.write_text("invalid json content")

        with patch('parley_chat.utils.usage_tracker._FILE_PATH', usage_file):
            assert load_usage() == {}

    def test_unwritable_file_does_not_raise(self, tmp_path):
        """Test that a failed write is logged, not raised."""
        with patch('parley_chat.utils.usage_tracker._FILE_PATH', tmp_path / "no" / "such" / "dir.json"):
            record_usage("gpt-4o", 1, 1)
            assert load_usage() == {}

    def test_reset_usage(self, tmp_path):
        """Test the reset usage functionality."""
        usage_file = tmp_path / "usage.json"

        with patch('parley_chat.utils.usage_tracker._FILE_PATH', usage_file):
            record_usage("gpt-4o", 100, 50)
            record_usage("gpt-4o-mini", 200, 100)
            assert len(load_usage()) == 2

            reset_usage()
            assert load_usage() == {}
