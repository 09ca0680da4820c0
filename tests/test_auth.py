from __future__ import annotations

import jwt
import pytest

from campus_sos.infra import auth
from campus_sos.infra.auth import create_access_token, decode_access_token, identity_from_claims


def test_token_carries_identity_metadata() -> None:
    token = create_access_token(
        user_id="user-1",
        email="asha@campus.edu",
        metadata={"full_name": "Asha Rao", "roll_number": 2101, "role": "student"},
    )
    identity = identity_from_claims(decode_access_token(token))

    assert identity is not None
    assert identity.user_id == "user-1"
    assert identity.email == "asha@campus.edu"
    assert identity.full_name == "Asha Rao"
    assert identity.roll_number == "2101"
    assert identity.role == "student"


def test_blank_metadata_reads_as_missing() -> None:
    identity = identity_from_claims({"sub": "user-1", "email": "", "user_metadata": {"full_name": "  "}})
    assert identity is not None
    assert identity.email is None
    assert identity.full_name is None
    assert identity.role is None
    assert identity_from_claims({"email": "x@campus.edu"}) is None


def test_wrong_audience_is_rejected() -> None:
    token = jwt.encode({"sub": "user-1", "aud": "someone-else"}, auth.JWT_SECRET, algorithm=auth.JWT_ALGORITHM)
    with pytest.raises(jwt.InvalidAudienceError):
        decode_access_token(token)
