"""Retry policies for step execution."""

from irflow.kernel.validation.retry import RetryConfig, execute_with_retry

__all__ = ["RetryConfig", "execute_with_retry"]
