"""Unit tests for retry logic"""
import pytest
import httpx
from unittest.mock import AsyncMock, patch

from src.exceptions import (
    ConcurrentUpdateError,
    ConnectionError,
    InvalidPointsError,
    ResponseProviderError,
)
from src.resilience.retry import (
    retry_with_backoff,
    with_retry,
    is_retryable_error,
    calculate_backoff,
    MAX_RETRIES,
)


@pytest.fixture(autouse=True)
def no_sleep():
    """Skip real backoff delays"""
    with patch("src.resilience.retry.asyncio.sleep", AsyncMock()) as mock_sleep:
        yield mock_sleep


def test_is_retryable_error_timeout():
    """Test that timeout errors are retryable"""
    assert is_retryable_error(httpx.TimeoutException("Timeout")) == True
    assert is_retryable_error(httpx.ConnectTimeout("Connect timeout")) == True
    assert is_retryable_error(httpx.ReadTimeout("Read timeout")) == True


def test_is_retryable_error_http_status():
    """Test that certain HTTP status codes are retryable"""
    retryable_codes = [429, 500, 502, 503, 504]
    non_retryable_codes = [400, 401, 403, 404, 422]

    for code in retryable_codes:
        response = httpx.Response(code)
        error = httpx.HTTPStatusError("Error", request=None, response=response)
        assert is_retryable_error(error) == True, f"HTTP {code} should be retryable"

    for code in non_retryable_codes:
        response = httpx.Response(code)
        error = httpx.HTTPStatusError("Error", request=None, response=response)
        assert is_retryable_error(error) == False, f"HTTP {code} should not be retryable"


def test_is_retryable_error_companion_errors():
    """CompanionErrors are retried according to their retryable flag"""
    assert is_retryable_error(ConcurrentUpdateError()) == True
    assert is_retryable_error(ConnectionError()) == True
    assert is_retryable_error(ResponseProviderError("down")) == True
    assert is_retryable_error(InvalidPointsError(-1)) == False


def test_is_retryable_error_non_retryable():
    """Test that non-retryable errors are identified correctly"""
    assert is_retryable_error(ValueError("Bad value")) == False
    assert is_retryable_error(KeyError("Missing key")) == False
    assert is_retryable_error(TypeError("Type error")) == False


def test_calculate_backoff():
    """Test exponential backoff calculation"""
    delay_0 = calculate_backoff(0)
    assert 0.9 <= delay_0 <= 1.1  # 1s ± 10% jitter

    delay_1 = calculate_backoff(1)
    assert 1.8 <= delay_1 <= 2.2

    delay_2 = calculate_backoff(2)
    assert 3.6 <= delay_2 <= 4.4

    assert delay_1 > delay_0
    assert delay_2 > delay_1


def test_calculate_backoff_custom_base():
    """Lock conflicts use a much shorter base delay"""
    delay = calculate_backoff(0, base_delay=0.05)
    assert 0.045 <= delay <= 0.055


def test_calculate_backoff_max_delay():
    """Test that backoff respects max delay"""
    delay = calculate_backoff(20)
    assert delay <= 33.0  # 30s + 10% jitter


@pytest.mark.asyncio
async def test_retry_with_backoff_success_first_try(no_sleep):
    """Test that function succeeds on first try"""

    call_count = 0

    async def successful_function():
        nonlocal call_count
        call_count += 1
        return "success"

    result = await retry_with_backoff(successful_function, max_retries=3)

    assert result == "success"
    assert call_count == 1
    no_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_with_backoff_success_after_retries(no_sleep):
    """Test that function succeeds after some retries"""

    attempt = 0

    async def flaky_function():
        nonlocal attempt
        attempt += 1
        if attempt < 3:
            raise httpx.TimeoutException("Simulated timeout")
        return "success"

    result = await retry_with_backoff(flaky_function, max_retries=3)

    assert result == "success"
    assert attempt == 3
    assert no_sleep.await_count == 2


@pytest.mark.asyncio
async def test_retry_with_backoff_exhausted():
    """Test that retries are exhausted for persistent failures"""

    attempt = 0

    async def always_fails():
        nonlocal attempt
        attempt += 1
        raise httpx.TimeoutException("Always fails")

    with pytest.raises(httpx.TimeoutException, match="Always fails"):
        await retry_with_backoff(always_fails, max_retries=3)

    # Initial call + 3 retries
    assert attempt == 4


@pytest.mark.asyncio
async def test_retry_concurrent_update_conflict():
    """Row-lock conflicts are retried and finally surface as retryable"""

    attempt = 0

    async def _apply_once():
        nonlocal attempt
        attempt += 1
        raise ConcurrentUpdateError("lock timeout")

    with pytest.raises(ConcurrentUpdateError) as exc_info:
        await retry_with_backoff(_apply_once, max_retries=2, base_delay=0.05)

    assert attempt == 3
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_retry_with_backoff_non_retryable_error():
    """Test that non-retryable errors are not retried"""

    attempt = 0

    async def non_retryable_function():
        nonlocal attempt
        attempt += 1
        raise InvalidPointsError(-1)

    with pytest.raises(InvalidPointsError):
        await retry_with_backoff(non_retryable_function, max_retries=3)

    assert attempt == 1


@pytest.mark.asyncio
async def test_retry_zero_retries_calls_once():
    attempt = 0

    async def always_fails():
        nonlocal attempt
        attempt += 1
        raise httpx.ReadTimeout("slow")

    with pytest.raises(httpx.ReadTimeout):
        await retry_with_backoff(always_fails, max_retries=0)

    assert attempt == 1


@pytest.mark.asyncio
async def test_retry_records_metric():
    attempt = 0

    async def _fold_once():
        nonlocal attempt
        attempt += 1
        if attempt == 1:
            raise ConcurrentUpdateError("lock timeout")
        return "folded"

    with patch("src.resilience.metrics.record_retry") as mock_record:
        assert await retry_with_backoff(_fold_once, max_retries=2) == "folded"

    mock_record.assert_called_once_with("fold_once")


@pytest.mark.asyncio
async def test_with_retry_decorator():
    """Test that @with_retry decorator works correctly"""

    attempt = 0

    @with_retry(max_retries=2)
    async def flaky_function():
        nonlocal attempt
        attempt += 1
        if attempt < 2:
            raise httpx.TimeoutException("Flaky error")
        return "success"

    result = await flaky_function()

    assert result == "success"
    assert attempt == 2


@pytest.mark.asyncio
async def test_with_retry_decorator_exhausted():
    """Test that decorator respects max_retries limit"""

    attempt = 0

    @with_retry(max_retries=2)
    async def always_fails():
        nonlocal attempt
        attempt += 1
        raise httpx.TimeoutException("Always fails")

    with pytest.raises(httpx.TimeoutException):
        await always_fails()

    assert attempt == 3


@pytest.mark.asyncio
async def test_retry_with_http_429_rate_limit():
    """Test that HTTP 429 rate limit errors are retried"""

    attempt = 0

    async def rate_limited_function():
        nonlocal attempt
        attempt += 1
        if attempt < 3:
            response = httpx.Response(429)
            raise httpx.HTTPStatusError("Rate limited", request=None, response=response)
        return "success"

    result = await retry_with_backoff(rate_limited_function, max_retries=3)

    assert result == "success"
    assert attempt == 3


@pytest.mark.asyncio
async def test_retry_with_http_401_unauthorized():
    """Test that HTTP 401 unauthorized errors are not retried"""

    attempt = 0

    async def unauthorized_function():
        nonlocal attempt
        attempt += 1
        response = httpx.Response(401)
        raise httpx.HTTPStatusError("Unauthorized", request=None, response=response)

    with pytest.raises(httpx.HTTPStatusError, match="Unauthorized"):
        await retry_with_backoff(unauthorized_function, max_retries=3)

    assert attempt == 1


@pytest.mark.asyncio
async def test_retry_preserves_function_args():
    """Test that retry logic preserves function arguments"""

    async def function_with_args(x, y, z=10):
        return x + y + z

    result = await retry_with_backoff(function_with_args, 5, 3, z=7, max_retries=2)

    assert result == 15


def test_default_max_retries():
    """Test that default MAX_RETRIES is set correctly"""
    assert MAX_RETRIES == 3
