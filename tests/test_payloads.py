import uuid

import pytest

from newsletter.core.exceptions import PayloadError
from newsletter.schemas.payloads import SendNewsletterPayload


def test_payload_round_trip_keeps_identifiers():
    content_id, job_id = uuid.uuid4(), uuid.uuid4()

    encoded = SendNewsletterPayload(content_id=content_id, job_id=job_id).encode()
    decoded = SendNewsletterPayload.decode(encoded)

    assert encoded == {"content_id": str(content_id), "job_id": str(job_id)}
    assert decoded.content_id == content_id
    assert decoded.job_id == job_id


@pytest.mark.parametrize("payload", [
    None,
    "not-an-object",
    {"content_id": str(uuid.uuid4())},
    {"content_id": "nope", "job_id": str(uuid.uuid4())},
    {"content_id": str(uuid.uuid4()), "job_id": str(uuid.uuid4()), "extra": 1},
])
def test_malformed_payload_is_rejected(payload):
    with pytest.raises(PayloadError):
        SendNewsletterPayload.decode(payload)
