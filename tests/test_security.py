from app.core.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    get_password_hash,
    verify_password,
)


def test_password_hash_roundtrip():
    hashed = get_password_hash("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_access_token_carries_user_claims():
    token = create_access_token({"sub": "asha", "role": "admin", "uid": 7})
    data = decode_token(token)
    assert data.username == "asha"
    assert data.role == "admin"
    assert data.user_id == 7


def test_refresh_token_is_not_an_access_token():
    token = create_refresh_token({"sub": "asha", "role": "user", "uid": 7})
    assert decode_token(token).username is None
    assert decode_token(token, expected_type=REFRESH).username == "asha"


def test_garbage_token_decodes_to_nothing():
    assert decode_token("not-a-jwt").username is None
