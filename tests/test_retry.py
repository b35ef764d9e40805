"""Unit tests for utils/retry.py - retry with backoff."""

import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from gyro_aws.utils.retry import RetryStrategy


class TestRetryStrategy:
    """Tests for RetryStrategy."""

    def test_should_retry_known_codes(self, client_error):
        """Test that default and extra codes are retryable."""
        strategy = RetryStrategy(retryable_codes=["InvalidVolume.NotFound"])

        assert strategy.should_retry(client_error("Throttling"), 0)
        assert strategy.should_retry(client_error("InvalidVolume.NotFound"), 0)
        assert not strategy.should_retry(client_error("AccessDenied"), 0)
        assert not strategy.should_retry(ValueError("x"), 0)

    def test_should_not_retry_past_limit(self, client_error):
        """Test that the retry limit is respected."""
        strategy = RetryStrategy(max_retries=2)

        assert strategy.should_retry(client_error("Throttling"), 1)
        assert not strategy.should_retry(client_error("Throttling"), 2)

    def test_exponential_delay_without_jitter(self):
        """Test backoff growth and cap."""
        strategy = RetryStrategy(base_delay=1.0, max_delay=5.0, exponential_base=2.0, jitter=False)

        assert [strategy.get_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_adds_at_most_ten_percent(self):
        """Test the jitter bound."""
        strategy = RetryStrategy(base_delay=1.0, jitter=True)

        for _ in range(20):
            assert 1.0 <= strategy.get_delay(0) <= 1.1

    def test_execute_retries_then_succeeds(self, client_error):
        """Test that transient errors are retried until success."""
        sleep = MagicMock()
        strategy = RetryStrategy(base_delay=0.5, exponential_base=1.0, jitter=False, sleep=sleep)
        func = MagicMock(side_effect=[client_error("Throttling"), client_error("Throttling"), "ok"])

        assert strategy.execute_with_retry(func, "a", key="b") == "ok"
        assert func.call_count == 3
        func.assert_called_with("a", key="b")
        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)

    def test_execute_raises_non_retryable(self, client_error):
        """Test that other errors are raised immediately."""
        sleep = MagicMock()
        strategy = RetryStrategy(sleep=sleep)
        func = MagicMock(side_effect=client_error("AccessDenied"))

        with pytest.raises(ClientError):
            strategy.execute_with_retry(func)

        assert func.call_count == 1
        sleep.assert_not_called()

    def test_execute_gives_up(self, client_error):
        """Test that the last error is raised once retries are exhausted."""
        strategy = RetryStrategy(max_retries=2, jitter=False, sleep=MagicMock())
        func = MagicMock(side_effect=client_error("Throttling"))

        with pytest.raises(ClientError):
            strategy.execute_with_retry(func)

        assert func.call_count == 3
