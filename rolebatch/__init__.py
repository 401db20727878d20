"""Rate-limited bulk tag (role) mutations for chat-platform automation."""

from rolebatch.runtime import BatchRuntime

__all__ = ["BatchRuntime"]
