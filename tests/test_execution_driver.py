"""
Tests for the batched program dispatcher
"""
import random
import pytest
from unittest.mock import MagicMock
from interpreter_fuzzer.fuzzer_engine.execution_driver import ExecutionDriver, next_idempotency_key
from interpreter_fuzzer.fuzzer_engine.error_handler import ErrorHandler, RetryConfig
from interpreter_fuzzer.fuzzer_engine.state_tracker import StateTracker
from interpreter_fuzzer.fuzzer_engine.test_case_generator import TestCaseGenerator
from interpreter_fuzzer.errors import ConfigurationError, DispatchError, InvariantViolation
from interpreter_fuzzer.models import Program, IncrementCommand, CommandType
from conftest import FakeRestateClient


def _program(size=1):
    return Program(commands=tuple(IncrementCommand(CommandType.INCREMENT_STATE_COUNTER) for _ in range(size)))


def _driver(client, tracker, recording_sleep, urls=("http://n1:8080",), **kwargs):
    return ExecutionDriver(
        client,
        tracker,
        urls,
        error_handler=ErrorHandler(sleep=recording_sleep),
        retry_config=RetryConfig(max_attempts=3, attempt_timeout=1.0, delay=0.0),
        rng=random.Random(0),
        **kwargs
    )


class TestExecutionDriver:
    """Test dispatching programs"""

    @pytest.mark.asyncio
    async def test_sends_every_program(self, recording_sleep):
        client = FakeRestateClient(4)
        tracker = StateTracker(4)
        driver = _driver(client, tracker, recording_sleep, batch_size=2)

        sent = await driver.run([(0, _program(2)), (1, _program()), (3, _program(3))])

        assert sent == 3
        assert len(client.sends) == 3
        assert tracker.get_layer(0) == [2, 1, 0, 3]
        assert client.applied.get_states() == tracker.get_states()

    @pytest.mark.asyncio
    async def test_idempotency_keys_unique_and_increasing(self, recording_sleep):
        client = FakeRestateClient(2)
        driver = _driver(client, StateTracker(2), recording_sleep, batch_size=3)

        await driver.run([(0, _program()) for _ in range(7)])

        keys = [int(key) for _, _, key in client.sends]
        assert len(set(keys)) == 7
        # Every batch resolves before the next one takes its keys
        assert max(keys[:3]) < min(keys[3:6])
        assert max(keys[3:6]) < min(keys[6:])

    def test_next_idempotency_key_increases(self):
        first = int(next_idempotency_key())
        second = int(next_idempotency_key())
        assert second > first

    @pytest.mark.asyncio
    async def test_model_updated_before_send(self, recording_sleep):
        """Test the tracker already accounts for a program on its first delivery attempt"""
        tracker = StateTracker(2)
        seen = []

        class CheckingClient(FakeRestateClient):
            async def send_interpreter(self, ingress_url, interpreter_id, idempotency_key, program):
                seen.append(tracker.get_layer(0)[int(interpreter_id)])
                await super().send_interpreter(ingress_url, interpreter_id, idempotency_key, program)

        driver = _driver(CheckingClient(2), tracker, recording_sleep)

        await driver.run([(1, _program(2))])

        assert seen == [2]

    @pytest.mark.asyncio
    async def test_retries_reuse_idempotency_key(self, recording_sleep):
        """Test a retried send keeps its key and applies once"""
        client = FakeRestateClient(2)
        client.failures_left = 2
        driver = _driver(client, StateTracker(2), recording_sleep)

        await driver.run([(0, _program())])

        assert len(client.sends) == 3
        assert len({key for _, _, key in client.sends}) == 1
        assert client.applied.get_layer(0) == [1, 0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self, recording_sleep):
        client = FakeRestateClient(2)
        client.always_fail = True
        driver = _driver(client, StateTracker(2), recording_sleep)

        with pytest.raises(DispatchError):
            await driver.run([(0, _program()), (1, _program())])

        assert driver.sent == 0

    @pytest.mark.asyncio
    async def test_rejected_program_sends_nothing(self, recording_sleep):
        """Test a batch the model rejects is not partially dispatched"""
        client = FakeRestateClient(2)
        driver = _driver(client, StateTracker(2), recording_sleep, batch_size=3)

        with pytest.raises(InvariantViolation):
            await driver.run([(0, _program()), (1, _program()), (5, _program())])

        assert client.sends == []
        assert driver.sent == 0

    @pytest.mark.asyncio
    async def test_batch_logged(self, recording_sleep):
        fuzzer_logger = MagicMock()
        driver = _driver(FakeRestateClient(2), StateTracker(2), recording_sleep,
                         batch_size=2, fuzzer_logger=fuzzer_logger)

        await driver.run([(0, _program()) for _ in range(3)])

        assert [c.args for c in fuzzer_logger.log_batch_sent.call_args_list] == [(2, 2), (1, 3)]

    @pytest.mark.asyncio
    async def test_sends_follow_updated_ingress(self, recording_sleep):
        client = FakeRestateClient(2)
        driver = _driver(client, StateTracker(2), recording_sleep)

        await driver.send_batch([(0, _program())])
        driver.update_ingress_urls(["http://n2:9080"])
        await driver.send_batch([(0, _program())])

        assert [url for url, _, _ in client.sends] == ["http://n1:8080", "http://n2:9080"]

    @pytest.mark.asyncio
    async def test_seeded_workload_converges_on_fake(self, base_config, recording_sleep):
        """Test the model matches what a correct cluster applies"""
        client = FakeRestateClient(base_config.keys)
        client.failures_left = 5
        tracker = StateTracker(base_config.keys)
        driver = _driver(client, tracker, recording_sleep, urls=("http://a", "http://b"), batch_size=8)

        await driver.run(TestCaseGenerator(base_config).generate())

        assert driver.sent == base_config.tests
        assert client.applied.get_states() == tracker.get_states()

    def test_ingress_urls_required(self, recording_sleep):
        with pytest.raises(ConfigurationError):
            _driver(FakeRestateClient(1), StateTracker(1), recording_sleep, urls=())

        driver = _driver(FakeRestateClient(1), StateTracker(1), recording_sleep)
        with pytest.raises(ConfigurationError):
            driver.update_ingress_urls([])
        assert driver.ingress_urls == ("http://n1:8080",)

    def test_invalid_batch_size(self, recording_sleep):
        with pytest.raises(ConfigurationError):
            _driver(FakeRestateClient(1), StateTracker(1), recording_sleep, batch_size=0)
