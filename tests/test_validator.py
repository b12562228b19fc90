import httpx
import pytest

from oauth.validator import CredentialValidationError, CredentialValidator, make_client_factory


def caspio_transport(token_status=200):
    def handler(request):
        if request.url.path == "/oauth/token":
            if token_status != 200:
                return httpx.Response(token_status, text="invalid_client")
            return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
        return httpx.Response(200, json={"Result": []})
    return httpx.MockTransport(handler)


async def test_valid_credentials():
    validator = CredentialValidator(make_client_factory(5, transport=caspio_transport()))
    await validator.validate("https://c1.caspio.com", "cid", "secret")


async def test_rejected_credentials():
    validator = CredentialValidator(make_client_factory(5, transport=caspio_transport(401)))
    with pytest.raises(CredentialValidationError) as exc:
        await validator.validate("https://c1.caspio.com", "cid", "wrong")
    assert "check your credentials" in str(exc.value)


async def test_unreachable_backend():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    validator = CredentialValidator(make_client_factory(5, transport=httpx.MockTransport(refuse)))
    with pytest.raises(CredentialValidationError) as exc:
        await validator.validate("https://c1.caspio.com", "cid", "secret")
    assert str(exc.value).startswith("Connection failed")


async def test_base_url_scheme_required():
    validator = CredentialValidator(make_client_factory(5, transport=caspio_transport()))
    with pytest.raises(CredentialValidationError):
        await validator.validate("c1.caspio.com", "cid", "secret")
