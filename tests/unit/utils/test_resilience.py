"""Tests for the retry decorator."""

from __future__ import annotations

import pytest

from ccindex.utils import resilience
from ccindex.utils.exceptions import StorageError, TransientStorageError
from ccindex.utils.resilience import with_retry

pytestmark = [pytest.mark.unit]


@pytest.fixture
def sleeps(monkeypatch):
    recorded: list[float] = []
    monkeypatch.setattr(resilience.time, "sleep", recorded.append)
    return recorded


class TestWithRetry:
    def test_success_first_time(self, sleeps):
        calls = []

        @with_retry(retries=2)
        def op():
            calls.append(1)
            return "ok"

        assert op() == "ok"
        assert len(calls) == 1
        assert sleeps == []

    def test_recovers(self, sleeps):
        attempts = iter([TransientStorageError("locked"), "ok"])

        @with_retry(retries=1, delay=0.1, exceptions=(TransientStorageError,))
        def op():
            result = next(attempts)
            if isinstance(result, Exception):
                raise result
            return result

        assert op() == "ok"
        assert sleeps == [0.1]

    def test_gives_up(self, sleeps):
        calls = []

        @with_retry(retries=2, delay=1.0, backoff=3.0, max_delay=2.0)
        def op():
            calls.append(1)
            raise TransientStorageError("locked")

        with pytest.raises(TransientStorageError):
            op()
        assert len(calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_other_exceptions_not_retried(self, sleeps):
        calls = []

        @with_retry(retries=3, exceptions=(TransientStorageError,))
        def op():
            calls.append(1)
            raise StorageError("corrupt")

        with pytest.raises(StorageError):
            op()
        assert len(calls) == 1

    def test_preserves_metadata(self):
        @with_retry()
        def read_entry():
            """Docstring."""

        assert read_entry.__name__ == "read_entry"
        assert read_entry.__doc__ == "Docstring."
