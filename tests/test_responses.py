"""Tests for response wire shapes."""

import json

from execgate.errors import CommandExitError, CommandTimeoutError
from execgate.execution import ExecutionOutcome, StreamEvent
from execgate.responses import (
    collected_payload,
    collected_response,
    detached_payload,
    detached_response,
    encode_event,
)


class TestDetached:
    def test_success(self) -> None:
        response = detached_response(None)

        assert response.status_code == 200
        assert json.loads(response.body) == {"status": "success"}

    def test_failure(self) -> None:
        response = detached_response(CommandExitError(1))

        assert response.status_code == 500
        assert json.loads(response.body) == {"status": "error", "error": "exit status 1"}

    def test_payload_has_no_output_fields(self) -> None:
        assert set(detached_payload(CommandExitError(2))) == {"status", "error"}


class TestCollected:
    def test_success_shape(self) -> None:
        outcome = ExecutionOutcome(stdout="hi\n", stderr="", exit_code=0)

        assert list(collected_payload(outcome)) == ["status", "stdout", "stderr", "exit_code"]
        assert collected_response(outcome).status_code == 200

    def test_failure_shape(self) -> None:
        outcome = ExecutionOutcome(
            stdout="partial\n", stderr="oops\n", exit_code=3, error=CommandExitError(3)
        )

        payload = collected_payload(outcome)
        assert list(payload) == ["status", "error", "stdout", "stderr", "exit_code"]
        assert payload == {
            "status": "error",
            "error": "exit status 3",
            "stdout": "partial\n",
            "stderr": "oops\n",
            "exit_code": 3,
        }

        response = collected_response(outcome)
        assert response.status_code == 500
        assert json.loads(response.body) == payload

    def test_timeout_exit_code(self) -> None:
        outcome = ExecutionOutcome(exit_code=-1, error=CommandTimeoutError(2))

        assert collected_payload(outcome)["exit_code"] == -1
        assert collected_payload(outcome)["error"] == "command timed out after 2s"


class TestEncodeEvent:
    def test_line_event(self) -> None:
        frame = encode_event(StreamEvent("stdout", "out")).encode()

        assert frame == b"event: stdout\ndata: out\n\n"

    def test_close_event(self) -> None:
        frame = encode_event(StreamEvent("close", "Command finished")).encode()

        assert frame == b"event: close\ndata: Command finished\n\n"

    def test_empty_line(self) -> None:
        frame = encode_event(StreamEvent("stderr", "")).encode()

        assert frame == b"event: stderr\ndata: \n\n"

    def test_carriage_return_keeps_one_data_line(self) -> None:
        frame = encode_event(StreamEvent("stdout", "10%\r55%\r100%")).encode()

        assert frame == b"event: stdout\ndata: 100%\n\n"
