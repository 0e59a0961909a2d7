from __future__ import annotations

import logging
import sys

import pytest

from devsupervisor.config import ConfigurationError
from devsupervisor.workers import (
    WORKERS_VARIABLE,
    CommandProcessorCount,
    WorkerCountResolver,
    default_processor_count,
)


class FakeProcessorCount:
    description = "fake-nproc"

    def __init__(self, result=8, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    def query(self) -> int:
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


def test_literal_number_skips_query():
    counter = FakeProcessorCount()
    env = {}
    assert WorkerCountResolver(counter, windows=False).resolve("4", env) == 4
    assert env == {WORKERS_VARIABLE: "4"}
    assert counter.calls == 0


def test_auto_uses_query():
    counter = FakeProcessorCount(result=12)
    env = {}
    WorkerCountResolver(counter, windows=False).resolve("auto", env)
    assert env[WORKERS_VARIABLE] == "12"
    assert counter.calls == 1


@pytest.mark.parametrize("token", [None, "null"])
def test_null_leaves_variable_unset(token):
    counter = FakeProcessorCount()
    env = {"OTHER": "x"}
    assert WorkerCountResolver(counter, windows=False).resolve(token, env) is None
    assert env == {"OTHER": "x"}
    assert counter.calls == 0


@pytest.mark.parametrize("token", ["many", "-2", "1.5", ""])
def test_invalid_token(token):
    with pytest.raises(ConfigurationError, match="Workers must be"):
        WorkerCountResolver(FakeProcessorCount(), windows=False).resolve(token, {})


def test_auto_count_failure_is_fatal():
    counter = FakeProcessorCount(error=ConfigurationError("Unable to determine number of cores available"))
    env = {}
    with pytest.raises(ConfigurationError):
        WorkerCountResolver(counter, windows=False).resolve("auto", env)
    assert WORKERS_VARIABLE not in env


def test_windows_auto_warns_but_sets(caplog):
    caplog.set_level(logging.WARNING, logger="devsupervisor.workers")
    env = {}
    WorkerCountResolver(FakeProcessorCount(result=2), windows=True).resolve("auto", env)
    assert env[WORKERS_VARIABLE] == "2"
    assert any("not supported by PHP on Windows" in r.getMessage() for r in caplog.records)


def test_command_count_nonzero_exit():
    counter = CommandProcessorCount([sys.executable, "-c", "import sys; print(4); sys.exit(1)"])
    with pytest.raises(ConfigurationError, match="Unable to determine number of cores"):
        counter.query()


def test_command_count_non_numeric_output():
    counter = CommandProcessorCount([sys.executable, "-c", "print('lots')"])
    with pytest.raises(ConfigurationError):
        counter.query()


def test_command_count_missing_binary():
    counter = CommandProcessorCount(["definitely-not-a-real-nproc-binary"])
    with pytest.raises(ConfigurationError):
        counter.query()


def test_command_count_success():
    counter = CommandProcessorCount([sys.executable, "-c", "print(6)"])
    assert counter.query() == 6


def test_default_counter_description():
    counter = default_processor_count()
    assert counter.description in ("nproc", "echo %NUMBER_OF_PROCESSORS%")
