import logging
import time
from datetime import timedelta
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from shopinstall import (
    InstalledShop,
    MemoryStorageShim,
    ShopInstallConfig,
    ShopInstallService,
)
from shopinstall.errors import (
    InvalidShopFormat,
    InvalidState,
    MissingParameters,
    MissingShop,
    Timeout,
    TokenExchangeFailed,
)
from shopinstall.util import decode_state, encode_state

from .conftest import make_response


SHOP = "foo.myshopify.com"


@pytest.fixture
def service(install_config):
    return ShopInstallService(config=install_config)


@pytest.fixture
def nonce_service(install_config):
    install_config.state_mode = "nonce"
    return ShopInstallService(config=install_config, storage_shim=MemoryStorageShim())


def split_url(url):
    parts = urlsplit(url)
    return parts, {k: v[0] for k, v in parse_qs(parts.query).items()}


@pytest.mark.parametrize(
    "shop_host", ["foo.myshopify.com", "a.myshopify.com", "my-shop-99.myshopify.com"]
)
def test_begin_install_builds_authorize_url(service, shop_host):
    parts, query = split_url(service.begin_install(shop_host))
    assert parts.scheme == "https"
    assert parts.netloc == shop_host
    assert parts.path == "/admin/oauth/authorize"
    assert query["client_id"] == "key_abc"
    assert query["scope"] == "write_discounts"
    assert query["redirect_uri"] == "https://app.example.com/auth/callback"
    assert decode_state(query["state"]) == shop_host


def test_begin_install_keeps_scheme_of_host_name(install_config):
    install_config.host_name = "http://localhost:3000/"
    install_config.access_scopes = ("write_discounts", "read_orders")
    service = ShopInstallService(config=install_config)
    _, query = split_url(service.begin_install(SHOP))
    assert query["redirect_uri"] == "http://localhost:3000/auth/callback"
    assert query["scope"] == "write_discounts,read_orders"


@pytest.mark.parametrize("shop_host", [None, ""])
def test_begin_install_missing_shop(service, shop_host):
    with pytest.raises(MissingShop):
        service.begin_install(shop_host)


@pytest.mark.parametrize(
    "shop_host",
    [
        "foo.example.com",
        "-foo.myshopify.com",
        "foo.myshopify.com.evil.com",
        "foo/bar.myshopify.com",
        "https://foo.myshopify.com",
        "foo.myshopify.com\n",
    ],
)
def test_begin_install_invalid_shop(service, shop_host):
    with pytest.raises(InvalidShopFormat):
        service.begin_install(shop_host)


def test_begin_install_encoded_mode_stores_nothing(install_config):
    storage_shim = MemoryStorageShim()
    service = ShopInstallService(config=install_config, storage_shim=storage_shim)
    service.begin_install(SHOP)
    assert storage_shim.sessions == {}


@patch("shopinstall.requests.post")
def test_complete_install_success(post, service):
    post.return_value = make_response(200, {"access_token": "tok_123"})
    installed_shop = service.complete_install("valid_code", SHOP, encode_state(SHOP))
    assert installed_shop == InstalledShop(shop=SHOP, access_token="tok_123")
    assert installed_shop.token == "tok_123"
    post.assert_called_once()
    args, kwargs = post.call_args
    assert args == ("https://foo.myshopify.com/admin/oauth/access_token",)
    assert kwargs["json"] == {
        "client_id": "key_abc",
        "client_secret": "secret_xyz",
        "code": "valid_code",
    }
    assert kwargs["timeout"] == 10


@patch("shopinstall.requests.post")
def test_complete_install_parses_granted_scopes(post, service):
    post.return_value = make_response(
        200, {"access_token": "tok_123", "scope": "write_discounts,read_discounts"}
    )
    installed_shop = service.complete_install("code", SHOP, encode_state(SHOP))
    assert installed_shop.access_scopes == ["write_discounts", "read_discounts"]


@patch("shopinstall.requests.post")
def test_complete_install_warns_when_scopes_missing(post, service, caplog):
    post.return_value = make_response(
        200, {"access_token": "tok_123", "scope": "read_discounts"}
    )
    with caplog.at_level(logging.WARNING, logger="shopinstall"):
        service.complete_install("code", SHOP, encode_state(SHOP))
    assert "do not cover requested scopes" in caplog.text
    assert "tok_123" not in caplog.text


@pytest.mark.parametrize(
    "code,shop_host", [(None, SHOP), ("", SHOP), ("code", None), ("code", "")]
)
@patch("shopinstall.requests.post")
def test_complete_install_missing_parameters(post, service, code, shop_host):
    with pytest.raises(MissingParameters):
        service.complete_install(code, shop_host, encode_state(SHOP))
    post.assert_not_called()


@pytest.mark.parametrize(
    "state",
    [encode_state("bar.myshopify.com"), "garbage!", "", None, SHOP],
)
@patch("shopinstall.requests.post")
def test_complete_install_invalid_state(post, service, state):
    with pytest.raises(InvalidState):
        service.complete_install("valid_code", SHOP, state)
    post.assert_not_called()


@pytest.mark.parametrize("shop_host", ["evil.example.com", SHOP + "\n"])
@patch("shopinstall.requests.post")
def test_complete_install_rejects_non_shop_host(post, service, shop_host):
    with pytest.raises(InvalidState):
        service.complete_install("valid_code", shop_host, encode_state(shop_host))
    post.assert_not_called()


@patch("shopinstall.requests.post")
def test_complete_install_upstream_error(post, service):
    post.return_value = make_response(401, {"errors": "invalid code"})
    with pytest.raises(TokenExchangeFailed) as exc_info:
        service.complete_install("bad_code", SHOP, encode_state(SHOP))
    assert exc_info.value.upstream_status == 401
    assert "invalid code" in exc_info.value.upstream_body
    assert post.call_count == 1


@patch("shopinstall.requests.post")
@pytest.mark.parametrize(
    "payload",
    [
        {"unexpected": True},
        {"access_token": None},
        {"access_token": ""},
        {"access_token": 123},
        {"access_token": "tok_123", "scope": ["write_discounts"]},
        ["tok_123"],
    ],
)
def test_complete_install_without_access_token(post, service, payload):
    storage_shim = service.storage_shim = MemoryStorageShim()
    post.return_value = make_response(200, payload)
    with pytest.raises(TokenExchangeFailed):
        service.complete_install("code", SHOP, encode_state(SHOP))
    assert storage_shim.sessions == {}


@patch("shopinstall.requests.post")
def test_complete_install_timeout(post, service):
    post.side_effect = requests.Timeout("read timed out")
    with pytest.raises(Timeout) as exc_info:
        service.complete_install("code", SHOP, encode_state(SHOP))
    assert isinstance(exc_info.value, TokenExchangeFailed)
    assert post.call_count == 1


@patch("shopinstall.requests.post")
def test_complete_install_connection_error(post, service):
    post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TokenExchangeFailed):
        service.complete_install("code", SHOP, encode_state(SHOP))
    assert post.call_count == 1


@patch("shopinstall.requests.post")
def test_complete_install_stores_offline_session(post, install_config):
    post.return_value = make_response(
        200, {"access_token": "tok_123", "scope": "write_discounts"}
    )
    storage_shim = MemoryStorageShim()
    service = ShopInstallService(config=install_config, storage_shim=storage_shim)
    service.complete_install("code", SHOP, encode_state(SHOP))

    offline_session = service.load_offline_session(SHOP)
    assert offline_session.id == "offline_foo"
    assert offline_session.access_token == "tok_123"
    assert offline_session.access_scopes == ["write_discounts"]

    # A re-install replaces the token.
    post.return_value = make_response(200, {"access_token": "tok_456"})
    service.complete_install("code2", SHOP, encode_state(SHOP))
    assert service.load_offline_session(SHOP).access_token == "tok_456"
    assert len(storage_shim.sessions) == 1


@patch("shopinstall.requests.post")
def test_complete_install_calls_installed_handler(post, install_config):
    post.return_value = make_response(200, {"access_token": "tok_123"})
    handler = Mock()
    service = ShopInstallService(config=install_config, app_installed_handler=handler)
    installed_shop = service.complete_install("code", SHOP, encode_state(SHOP))
    handler.on_app_installed.assert_called_once_with(service, installed_shop)


@patch("shopinstall.requests.post")
def test_failed_install_does_not_call_handler(post, install_config):
    post.return_value = make_response(500, {"errors": "oops"})
    handler = Mock()
    service = ShopInstallService(config=install_config, app_installed_handler=handler)
    with pytest.raises(TokenExchangeFailed):
        service.complete_install("code", SHOP, encode_state(SHOP))
    handler.on_app_installed.assert_not_called()


def test_unknown_state_mode(install_config):
    install_config.state_mode = "cookie"
    with pytest.raises(ValueError):
        ShopInstallService(config=install_config)


def test_nonce_mode_requires_storage(install_config):
    install_config.state_mode = "nonce"
    with pytest.raises(ValueError):
        ShopInstallService(config=install_config)


def test_nonce_mode_stores_oauth_session(nonce_service):
    _, query = split_url(nonce_service.begin_install(SHOP))
    state = query["state"]
    assert decode_state(state) != SHOP
    oauth_session = nonce_service.storage_shim.load_session(f"oauth_{state}")
    assert oauth_session.shop_name == "foo"
    assert oauth_session.nonce == state
    assert oauth_session.requested_access_scopes == ["write_discounts"]


@patch("shopinstall.requests.post")
def test_nonce_mode_state_is_single_use(post, nonce_service):
    post.return_value = make_response(200, {"access_token": "tok_123"})
    _, query = split_url(nonce_service.begin_install(SHOP))
    installed_shop = nonce_service.complete_install("code", SHOP, query["state"])
    assert installed_shop.access_token == "tok_123"

    with pytest.raises(InvalidState):
        nonce_service.complete_install("code", SHOP, query["state"])
    assert post.call_count == 1


@patch("shopinstall.requests.post")
def test_nonce_mode_rejects_encoded_state(post, nonce_service):
    nonce_service.begin_install(SHOP)
    with pytest.raises(InvalidState):
        nonce_service.complete_install("code", SHOP, encode_state(SHOP))
    post.assert_not_called()


@patch("shopinstall.requests.post")
def test_nonce_mode_rejects_other_shop(post, nonce_service):
    _, query = split_url(nonce_service.begin_install(SHOP))
    with pytest.raises(InvalidState):
        nonce_service.complete_install("code", "bar.myshopify.com", query["state"])
    post.assert_not_called()


@patch("shopinstall.requests.post")
def test_nonce_mode_rejects_expired_session(post, nonce_service):
    _, query = split_url(nonce_service.begin_install(SHOP))
    started_at = nonce_service.utcnow()
    nonce_service.utcnow = lambda: started_at + timedelta(seconds=61)
    with pytest.raises(InvalidState):
        nonce_service.complete_install("code", SHOP, query["state"])
    post.assert_not_called()


def signed_params(service, **params):
    params.setdefault("timestamp", str(int(time.time())))
    params["hmac"] = service.calculate_hmac(service.config.api_secret, params.items())
    return params


@patch("shopinstall.requests.post")
def test_verify_hmac_accepts_signed_callback(post, install_config):
    install_config.verify_hmac = True
    service = ShopInstallService(config=install_config)
    post.return_value = make_response(200, {"access_token": "tok_123"})
    params = signed_params(service, code="code", shop=SHOP, state=encode_state(SHOP))
    installed_shop = service.complete_install(
        "code", SHOP, encode_state(SHOP), params=params
    )
    assert installed_shop.access_token == "tok_123"


@patch("shopinstall.requests.post")
def test_verify_hmac_rejects_tampered_callback(post, install_config):
    install_config.verify_hmac = True
    service = ShopInstallService(config=install_config)
    params = signed_params(service, code="code", shop=SHOP, state=encode_state(SHOP))
    params["code"] = "other_code"
    with pytest.raises(InvalidState):
        service.complete_install("other_code", SHOP, encode_state(SHOP), params=params)
    with pytest.raises(InvalidState):
        service.complete_install("code", SHOP, encode_state(SHOP), params={})
    post.assert_not_called()


@patch("shopinstall.requests.post")
def test_verify_hmac_rejects_old_timestamp(post, install_config):
    install_config.verify_hmac = True
    service = ShopInstallService(config=install_config)
    params = signed_params(
        service,
        code="code",
        shop=SHOP,
        state=encode_state(SHOP),
        timestamp=str(int(time.time()) - 2 * 24 * 60 * 60),
    )
    with pytest.raises(InvalidState):
        service.complete_install("code", SHOP, encode_state(SHOP), params=params)
    post.assert_not_called()


def test_encode_params_for_hmac(service):
    assert (
        service.encode_params_for_hmac(
            [("shop", SHOP), ("hmac", "x"), ("ids[]", ["1", "2"]), ("a", "b/c:d")]
        )
        == "a=b/c:d&ids=%221%22%2C+%222%22&shop=foo.myshopify.com"
    )


def test_config_is_plain_data():
    config = ShopInstallConfig(api_key="k", api_secret="s", host_name="https://x.test")
    assert config.get_redirect_uri() == "https://x.test/auth/callback"
    assert config.exchange_timeout_seconds == 10
    assert config.state_mode == "encoded"
