import pytest

from slidegate.config import EmailCaptchaConfig
from slidegate.errors import CaptchaError, ErrorKind
from slidegate.services.email_captcha import EmailCaptchaService, generate_code
from slidegate.services.store import MemoryTTLStore

from conftest import SECRET


def test_generated_codes_are_digits_of_requested_length():
    for length in (1, 4, 6, 8):
        code = generate_code(length)
        assert len(code) == length
        assert code.isdigit()


def test_code_digits_vary():
    codes = {generate_code(6) for _ in range(50)}
    assert len(codes) > 1


def test_code_length_must_be_positive(store):
    config = EmailCaptchaConfig(
        ttl_seconds=300, token_ttl_seconds=300, code_length=0, signing_secret=SECRET, signing_algorithm="HS256"
    )
    with pytest.raises(ValueError):
        EmailCaptchaService(config, store)


async def test_create_returns_code_for_delivery(email_service):
    challenge = await email_service.create("register")
    assert len(challenge.code) == 6
    assert challenge.expires_in == 300


async def test_verify_and_redeem(email_service):
    challenge = await email_service.create("register")
    outcome = await email_service.verify(challenge.id, challenge.code, "register")

    assert outcome.id == challenge.id
    assert await email_service.redeem_token(outcome.id, outcome.token, "register") is True
    assert await email_service.redeem_token(outcome.id, outcome.token, "register") is False


async def test_verify_is_not_idempotent(email_service):
    challenge = await email_service.create("register")
    await email_service.verify(challenge.id, challenge.code, "register")

    with pytest.raises(CaptchaError) as exc_info:
        await email_service.verify(challenge.id, challenge.code, "register")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


async def test_wrong_code(email_service):
    challenge = await email_service.create("register")
    wrong = "".join("1" if digit != "1" else "2" for digit in challenge.code)

    with pytest.raises(CaptchaError) as exc_info:
        await email_service.verify(challenge.id, wrong, "register")
    assert exc_info.value.kind is ErrorKind.CODE_MISMATCH

    # The record survives a wrong guess.
    outcome = await email_service.verify(challenge.id, challenge.code, "register")
    assert outcome.token


async def test_wrong_purpose(email_service):
    challenge = await email_service.create("register")
    with pytest.raises(CaptchaError) as exc_info:
        await email_service.verify(challenge.id, challenge.code, "reset_password")
    assert exc_info.value.kind is ErrorKind.PURPOSE_MISMATCH


async def test_token_for_one_purpose_fails_for_another(email_service):
    challenge = await email_service.create("register")
    outcome = await email_service.verify(challenge.id, challenge.code, "register")
    assert await email_service.redeem_token(outcome.id, outcome.token, "reset_password") is False


@pytest.mark.parametrize("record_id, code, purpose", [("", "123456", "register"), ("abc", "", "register"), ("abc", "123456", "")])
async def test_missing_fields(email_service, record_id, code, purpose):
    with pytest.raises(CaptchaError) as exc_info:
        await email_service.verify(record_id, code, purpose)
    assert exc_info.value.kind is ErrorKind.VALIDATION


async def test_expired_code_is_not_found(email_config):
    now = [1000.0]
    service = EmailCaptchaService(email_config, MemoryTTLStore(clock=lambda: now[0]))
    challenge = await service.create("register")
    now[0] += email_config.ttl_seconds
    with pytest.raises(CaptchaError) as exc_info:
        await service.verify(challenge.id, challenge.code, "register")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


async def test_verify_read_failure(flaky_email_service, flaky_client):
    challenge = await flaky_email_service.create("register")
    flaky_client.failing.add("get")
    with pytest.raises(CaptchaError) as exc_info:
        await flaky_email_service.verify(challenge.id, challenge.code, "register")
    assert exc_info.value.kind is ErrorKind.STORAGE
    assert flaky_client.calls["get"] == 1


async def test_verify_consume_failure(flaky_email_service, flaky_client):
    challenge = await flaky_email_service.create("register")
    flaky_client.failing.add("evalsha")
    with pytest.raises(CaptchaError) as exc_info:
        await flaky_email_service.verify(challenge.id, challenge.code, "register")
    assert exc_info.value.kind is ErrorKind.STORAGE
    assert flaky_client.calls["evalsha"] == 1
    assert flaky_client.calls["setex"] == 1


async def test_create_write_failure(flaky_email_service, flaky_client):
    flaky_client.failing.add("setex")
    with pytest.raises(CaptchaError) as exc_info:
        await flaky_email_service.create("register")
    assert exc_info.value.kind is ErrorKind.STORAGE
    assert flaky_client.calls["setex"] == 1
