"""Tests for mft_streaming models."""
import io

import pytest

from mft_streaming.errors import ServerError, ValidationFailure
from mft_streaming.models import (
    CompletionPolicy,
    Credential,
    TransferOutcome,
    UploadRequest,
    UploadResult,
    UploadStatus,
)


class TestUploadRequest:
    def test_create_request(self):
        request = UploadRequest(name="testStreamFile.txt", business_type_id=3, tenant_id="MyTenantId")
        assert request.name == "testStreamFile.txt"
        assert request.business_type_id == 3
        assert request.content is None

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_rejects_empty_name(self, name):
        with pytest.raises(ValueError, match="non-empty"):
            UploadRequest(name=name)

    def test_rejects_non_int_business_type(self):
        with pytest.raises(ValueError, match="business_type_id"):
            UploadRequest(name="a.txt", business_type_id="0")
        with pytest.raises(ValueError):
            UploadRequest(name="a.txt", business_type_id=True)

    def test_with_content_returns_copy(self):
        request = UploadRequest(name="a.txt")
        stream = io.BytesIO(b"abc")
        bound = request.with_content(stream)
        assert bound.content is stream
        assert request.content is None
        assert bound == request  # content is not part of equality

    def test_immutable(self):
        request = UploadRequest(name="a.txt")
        with pytest.raises(Exception):
            request.name = "b.txt"


class TestUploadResult:
    def test_from_response(self):
        result = UploadResult.from_response(
            {"name": "a.txt", "size": 101, "identifier": "f-1", "status": "Uploaded"}
        )
        assert result == UploadResult(name="a.txt", size=101, identifier="f-1", status=UploadStatus.UPLOADED)

    def test_from_response_id_fallback_and_default_status(self):
        result = UploadResult.from_response({"name": "a.txt", "size": 0, "id": 42})
        assert result.identifier == "42"
        assert result.status == UploadStatus.UPLOADED

    def test_unknown_status(self):
        result = UploadResult.from_response({"name": "a", "size": 1, "identifier": "x", "status": "weird"})
        assert result.status == UploadStatus.UNKNOWN

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"size": 1, "identifier": "x"},
            {"name": "a", "size": "1", "identifier": "x"},
            {"name": "a", "size": 1},
        ],
    )
    def test_malformed_response_fails_closed(self, payload):
        with pytest.raises(ServerError) as exc_info:
            UploadResult.from_response(payload, 200)
        assert exc_info.value.retryable is False
        assert exc_info.value.status_code == 200

    def test_to_dict(self):
        result = UploadResult(name="a", size=1, identifier="x")
        assert result.to_dict() == {"name": "a", "size": 1, "identifier": "x", "status": "uploaded"}


class TestCredential:
    def test_freshness_with_margin(self):
        credential = Credential(access_token="t", issued_at=100.0, expires_in=60.0)
        assert credential.expires_at == 160.0
        assert credential.is_fresh(129.0, safety_margin=30.0) is True
        assert credential.is_fresh(130.0, safety_margin=30.0) is False
        assert credential.is_fresh(159.9) is True

    def test_repr_hides_token(self):
        credential = Credential(access_token="super-secret-token", issued_at=0.0, expires_in=10.0)
        assert "super-secret-token" not in repr(credential)
        assert credential.authorization == "Bearer super-secret-token"


class TestTransferOutcome:
    def test_succeeded(self):
        request = UploadRequest(name="a.txt")
        result = UploadResult(name="a.txt", size=3, identifier="f-1")
        outcome = TransferOutcome.succeeded(request, result)
        assert outcome.ok is True
        assert outcome.unwrap() is result
        assert outcome.error_message is None

    def test_failed_unwrap_raises(self):
        request = UploadRequest(name="a.txt")
        error = ValidationFailure("bad request", 400, payload={"error": "bad"})
        outcome = TransferOutcome.failed(request, error)
        assert outcome.ok is False
        assert outcome.error_message == "bad request"
        with pytest.raises(ValidationFailure):
            outcome.unwrap()


def test_completion_policy_from_string():
    assert CompletionPolicy("race") is CompletionPolicy.RACE
    assert CompletionPolicy("all") is CompletionPolicy.ALL
