"""Tests for retry backoff."""

import pytest

from reporadar.jobs.backoff import BackoffPolicy


class TestBackoffPolicy:
    def test_exponential_growth(self):
        policy = BackoffPolicy(base_seconds=1.0, max_seconds=300.0)
        assert policy.delay_for(0) == 1.0
        assert policy.delay_for(1) == 2.0
        assert policy.delay_for(2) == 4.0
        assert policy.delay_for(3) == 8.0

    def test_capped(self):
        policy = BackoffPolicy(base_seconds=1.0, max_seconds=300.0)
        assert policy.delay_for(9) == 300.0
        assert policy.delay_for(10_000) == 300.0

    def test_custom_base(self):
        policy = BackoffPolicy(base_seconds=0.5, max_seconds=10.0)
        assert policy.delay_for(2) == 2.0

    def test_negative_attempt_rejected(self):
        with pytest.raises(ValueError):
            BackoffPolicy().delay_for(-1)
