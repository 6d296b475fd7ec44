"""Unit tests for OperationResult (src/models/result.py)"""
import pytest

from src.exceptions import ConcurrentUpdateError, InvalidPointsError
from src.models.result import OperationResult


def test_success():
    result = OperationResult.success({"total_points": 10})

    assert result.ok is True
    assert result.error is None
    assert result.reason_code is None
    assert result.retryable is False
    assert result.unwrap() == {"total_points": 10}


def test_failure_carries_reason():
    result = OperationResult.failure(InvalidPointsError(-1))

    assert result.ok is False
    assert result.value is None
    assert result.reason_code == "invalid_points"
    assert result.retryable is False


def test_retryable_failure():
    result = OperationResult.failure(ConcurrentUpdateError())
    assert result.retryable is True


def test_unwrap_failure_raises_carried_error():
    error = ConcurrentUpdateError()
    result = OperationResult.failure(error)

    with pytest.raises(ConcurrentUpdateError) as exc_info:
        result.unwrap()

    assert exc_info.value is error
