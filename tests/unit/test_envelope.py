"""
Unit tests for the task envelope.
"""

import json

import pytest
from pydantic import ValidationError

from jobqueue.errors import MalformedEnvelope
from jobqueue.types.envelope import TaskEnvelope


def make_envelope(**overrides) -> TaskEnvelope:
    fields = {
        "type": "email:send",
        "payload": b'{"to": "someone@example.com"}',
        "queue": "default",
        "max_retries": 3,
        "timeout_seconds": 30.0,
        "correlation_id": "req-123",
    }
    fields.update(overrides)
    return TaskEnvelope(**fields)


class TestTaskEnvelope:
    """Tests for TaskEnvelope."""

    def test_defaults(self):
        """A new envelope starts at attempt zero with a generated id."""
        envelope = make_envelope()

        assert envelope.attempt == 0
        assert len(envelope.id) == 32
        assert envelope.enqueued_at.tzinfo is not None

    def test_ids_are_unique(self):
        assert make_envelope().id != make_envelope().id

    def test_decode_of_encode_is_identity(self):
        """Encoding then decoding yields an equal envelope."""
        envelope = make_envelope(payload=bytes(range(256)), attempt=2)

        decoded = TaskEnvelope.decode(envelope.encode())

        assert decoded == envelope
        assert decoded.payload == bytes(range(256))

    def test_payload_is_base64_on_the_wire(self):
        envelope = make_envelope(payload=b"\x00\xff")

        wire = json.loads(envelope.encode())

        assert wire["payload"] == "AP8="

    def test_attempt_above_max_retries_rejected(self):
        with pytest.raises(ValidationError):
            make_envelope(attempt=4, max_retries=3)

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            make_envelope(timeout_seconds=0)

    def test_envelope_is_immutable(self):
        envelope = make_envelope()

        with pytest.raises(ValidationError):
            envelope.attempt = 1

    def test_next_attempt(self):
        """Retries keep identity and increment the attempt."""
        envelope = make_envelope()

        retry = envelope.next_attempt()

        assert retry.attempt == 1
        assert retry.id == envelope.id
        assert retry.queue == envelope.queue
        assert retry.correlation_id == envelope.correlation_id
        assert envelope.attempt == 0

    def test_next_attempt_past_max_retries_raises(self):
        envelope = make_envelope(max_retries=1, attempt=1)

        assert envelope.is_last_attempt
        with pytest.raises(ValueError):
            envelope.next_attempt()

    @pytest.mark.parametrize(
        "data",
        [
            b"not json",
            b"{}",
            b'{"type": "x", "queue": "default", "max_retries": 1, "timeout_seconds": 1, "extra": 1}',
            b'{"type": "x", "queue": "default", "max_retries": 1, "attempt": 2, "timeout_seconds": 1}',
        ],
    )
    def test_decode_malformed(self, data: bytes):
        """Undecodable or invalid bytes raise MalformedEnvelope."""
        with pytest.raises(MalformedEnvelope):
            TaskEnvelope.decode(data)
