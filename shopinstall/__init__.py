"""
@NOTE: Resolution for shop name overloading.

shop_name: The name of the shop, used as a subdomain of myshopify.com
shop_host: The shopname and the correct top level domain: "{shop_name}.myshopify.com".
    This is what shopify sends as the `shop` parameter.

@NOTE: Resolution for state.

The state sent to shopify and echoed back on the callback comes in two modes.
In "encoded" mode the state is just the base64 encoded shop host, nothing is
stored and the callback only checks that it decodes back to the shop host.
Anyone who knows the shop host can build that state so it is not a secret.
In "nonce" mode the state is a random nonce that is stored in a short lived
oauth session and consumed by the callback.
"""
import logging
from dataclasses import dataclass, asdict, field
import random
import string
import threading
import hmac
import hashlib
import time
from urllib.parse import urlencode

import requests
import zope.interface
from datetime import timedelta, datetime, timezone

from .errors import (
    MissingShop,
    InvalidShopFormat,
    MissingParameters,
    InvalidState,
    TokenExchangeFailed,
    Timeout,
)
from .interfaces import (
    IStorageShim,
    ISessionSerializer,
    IAppInstalledHandler,
)
from .scopes import parse_scopes, scopes_have_changed
from .util import (
    MYSHOPIFY_DOMAIN,
    decode_state,
    encode_state,
    extract_shop_name,
    is_valid_shop_host,
)

logger = logging.getLogger(__name__)


ENCODED_STATE_MODE = "encoded"


NONCE_STATE_MODE = "nonce"


STATE_MODES = (ENCODED_STATE_MODE, NONCE_STATE_MODE)


@dataclass
class ShopInstallConfig:
    """
    Mechanism to provide configuration to ShopInstallService.
    """

    api_key: str
    api_secret: str
    # Public base url of this app, ie. https://example.com
    host_name: str
    # The shopify access scopes that our app needs, such as write_discounts.
    access_scopes: tuple = ("write_discounts",)
    # Path on host_name that shopify redirects to with the grant code.
    callback_path: str = "/auth/callback"
    myshopify_domain: str = MYSHOPIFY_DOMAIN
    # Either encoded or nonce, see module notes.
    state_mode: str = ENCODED_STATE_MODE
    oauth_session_ttl_seconds: int = 60
    # Check shopify's hmac signature on the callback before exchanging the code.
    verify_hmac: bool = False
    exchange_timeout_seconds: float = 10

    def get_app_url(self):
        host_name = self.host_name.strip().rstrip("/")
        if "://" not in host_name:
            host_name = f"https://{host_name}"
        return host_name

    def get_redirect_uri(self):
        return self.get_app_url() + self.callback_path


OAUTH_SESSION_TYPE = "oauth"


@dataclass
class OAuthSession:
    """
    Holds values between the authorize redirect and the callback in nonce mode.
    """

    id: str
    shop_name: str
    # Key used once to check that the callback originated with our request.
    nonce: str
    requested_access_scopes: list
    expires_at_utcstamp: str
    type: str = OAUTH_SESSION_TYPE


OFFLINE_SESSION_TYPE = "offline"


@dataclass
class OfflineSession:
    """
    Holds the access token of a shop until it is replaced by a re-install.
    """

    id: str
    access_token: str
    shop_name: str
    # The granted scopes.
    access_scopes: list
    type: str = OFFLINE_SESSION_TYPE
    # This doesn't expire.
    expires_at_utcstamp: str = None


DEFAULT_SESSION_TYPE_LOOKUP = {
    OFFLINE_SESSION_TYPE: OfflineSession,
    OAUTH_SESSION_TYPE: OAuthSession,
}


@zope.interface.implementer(ISessionSerializer)
@dataclass
class ShopSessionSerializer:
    """
    Convert different types of sessions to and from plain dictionaries.

    Intended for storing and loading sessions from a JSON blob in a db.
    """

    lookup: dict = field(default_factory=lambda: DEFAULT_SESSION_TYPE_LOOKUP.copy())

    def get_type_cls(self, session_dict):
        return self.lookup[session_dict["type"]]

    def from_dict(self, session_dict):
        if not session_dict:
            return None
        else:
            return self.get_type_cls(session_dict)(**session_dict)

    def to_dict(self, session):
        return asdict(session)


@zope.interface.implementer(IStorageShim)
@dataclass
class MemoryStorageShim:
    """Keep sessions in a dict for the lifetime of the process."""

    serializer: ISessionSerializer = field(default_factory=ShopSessionSerializer)
    sessions: dict = field(default_factory=dict)
    lock: object = field(default_factory=threading.Lock, repr=False)

    def store_session(self, session):
        # Last writer wins.
        with self.lock:
            self.sessions[session.id] = self.serializer.to_dict(session)
        return True

    def load_session(self, session_id):
        with self.lock:
            session_dict = self.sessions.get(session_id)
        return self.serializer.from_dict(session_dict)

    def remove_session_by_id(self, session_id):
        with self.lock:
            return self.sessions.pop(session_id, None) is not None

    def remove_all_shop_sessions(self, shop_name):
        with self.lock:
            session_ids = [
                session_id
                for session_id, session_dict in self.sessions.items()
                if session_dict["shop_name"] == shop_name
            ]
            for session_id in session_ids:
                del self.sessions[session_id]
        return len(session_ids)


@dataclass
class InstalledShop:
    """Result of a completed install."""

    shop: str
    access_token: str
    access_scopes: list = field(default_factory=list)

    @property
    def token(self):
        return self.access_token


DAY_IN_SECONDS = 24 * 60 * 60


@dataclass
class ShopInstallService:
    """
    Shopify app install handshake: redirect to authorize, then exchange the grant code.

    Both operations are stateless per request unless nonce mode is used,
    in which case the storage shim holds the oauth session between them.
    """

    config: ShopInstallConfig
    # Optional, persists access tokens and is required for nonce mode.
    storage_shim: IStorageShim = None
    # Optional handler for app installs.
    app_installed_handler: IAppInstalledHandler = None
    utcnow: callable = field(default=lambda: datetime.now(timezone.utc))
    read_utcstamp: callable = field(
        default=lambda utcstamp: datetime.fromisoformat(utcstamp)
    )
    write_utcstamp: callable = field(default=lambda d: d.isoformat())

    def __post_init__(self):
        if self.config.state_mode not in STATE_MODES:
            raise ValueError(f"Unknown state mode: {self.config.state_mode}")
        if self.config.state_mode == NONCE_STATE_MODE and not self.storage_shim:
            raise ValueError("Nonce state mode requires a storage shim.")

    def begin_install(self, shop_host):
        """
        Validate the shop host and return the url to redirect the merchant to.

        The caller is responsible for issuing the redirect.
        """
        shop_host = self.validate_shop_host(shop_host)
        logger.info("Starting install for shop: %s", shop_host)
        state = self.create_state(shop_host)
        return self.build_authorize_url(shop_host, state)

    def complete_install(self, code, shop_host, state, params=None):
        """
        Validate the callback from shopify and exchange the grant code for an access token.

        `params` are all the callback query params, only needed to verify the hmac.

        Nothing is retried, every failure is final for this request.
        """
        if not code or not shop_host:
            raise MissingParameters("Callback is missing code or shop.")
        if not is_valid_shop_host(shop_host, self.config.myshopify_domain):
            # This host ends up in the token exchange url.
            raise InvalidState(f"Callback shop is not a shop host: {shop_host!r}")

        self.validate_state(shop_host, state)
        if self.config.verify_hmac:
            self.validate_hmac(params or {})
        logger.debug("State validated for shop: %s", shop_host)

        access_token, access_scopes = self.request_access_token(
            shop_host, code, self.config.api_key, self.config.api_secret
        )
        logger.info("Obtained access token for shop: %s", shop_host)
        if scopes_have_changed(
            installed_scopes=access_scopes, expected_scopes=self.config.access_scopes
        ):
            logger.warning(
                "Granted scopes %s do not cover requested scopes %s for shop: %s",
                access_scopes,
                list(self.config.access_scopes),
                shop_host,
            )
        installed_shop = InstalledShop(
            shop=shop_host, access_token=access_token, access_scopes=access_scopes
        )
        self.on_app_installed(installed_shop)
        return installed_shop

    def validate_shop_host(self, shop_host):
        if not shop_host:
            raise MissingShop()
        if not is_valid_shop_host(shop_host, self.config.myshopify_domain):
            logger.info("Invalid shop format: %r", shop_host)
            raise InvalidShopFormat()
        return shop_host

    def create_state(self, shop_host):
        if self.config.state_mode == ENCODED_STATE_MODE:
            return encode_state(shop_host)
        nonce = self.get_nonce()
        session = self.create_oauth_session(
            self.extract_shop_name(shop_host),
            nonce,
            requested_access_scopes=list(self.config.access_scopes),
            expires_in_seconds=self.config.oauth_session_ttl_seconds,
        )
        if not self.storage_shim.store_session(session):
            raise AssertionError("Failed to store session.")
        return nonce

    def validate_state(self, shop_host, state):
        if not state:
            raise InvalidState("Callback is missing state.")
        if self.config.state_mode == ENCODED_STATE_MODE:
            if decode_state(state) != shop_host:
                raise InvalidState("State does not decode to the callback shop.")
            return
        session_id = self.get_oauth_session_id(state)
        oauth_session = self.storage_shim.load_session(session_id)
        if not oauth_session:
            raise InvalidState("No oauth session for state, maybe already used.")
        # The nonce is single use whatever happens next.
        self.storage_shim.remove_session_by_id(session_id)
        if self.is_session_expired(oauth_session):
            raise InvalidState("The oauth session expired.")
        if oauth_session.shop_name != self.extract_shop_name(shop_host):
            raise InvalidState("The oauth session was started for another shop.")

    def build_authorize_url(self, shop_host, state):
        query = sorted(
            (
                {
                    "client_id": self.config.api_key,
                    # The scopes our app needs, like write_discounts.
                    "scope": ",".join(self.config.access_scopes),
                    # This tells shopify where to send the callback with our grant code.
                    "redirect_uri": self.config.get_redirect_uri(),
                    "state": state,
                }
            ).items()
        )
        return f"https://{shop_host}/admin/oauth/authorize?{urlencode(query)}"

    def get_utcstamp(self, after_seconds):
        return self.write_utcstamp(self.utcnow() + timedelta(seconds=after_seconds))

    def is_utcstamp_expired(self, utcstamp, use_as_utcnow=None):
        datetime_to_check = self.read_utcstamp(utcstamp)
        now = use_as_utcnow if use_as_utcnow else self.utcnow()
        return now > datetime_to_check

    def is_session_expired(self, session):
        return session.expires_at_utcstamp and self.is_utcstamp_expired(
            session.expires_at_utcstamp
        )

    def get_oauth_session_id(self, nonce):
        return f"oauth_{nonce}"

    def create_oauth_session(
        self, shop_name, nonce, requested_access_scopes, expires_in_seconds
    ):
        return OAuthSession(
            id=self.get_oauth_session_id(nonce),
            shop_name=shop_name,
            nonce=nonce,
            requested_access_scopes=requested_access_scopes,
            expires_at_utcstamp=self.get_utcstamp(after_seconds=expires_in_seconds),
        )

    def get_offline_session_id(self, shop_name):
        return f"offline_{shop_name}"

    def create_offline_session(self, shop_name, access_token, access_scopes):
        return OfflineSession(
            id=self.get_offline_session_id(shop_name),
            access_token=access_token,
            shop_name=shop_name,
            access_scopes=access_scopes,
        )

    def load_offline_session(self, shop_host):
        if not self.storage_shim:
            return None
        return self.storage_shim.load_session(
            self.get_offline_session_id(self.extract_shop_name(shop_host))
        )

    def on_app_installed(self, installed_shop):
        if self.storage_shim:
            offline_session = self.create_offline_session(
                self.extract_shop_name(installed_shop.shop),
                installed_shop.access_token,
                installed_shop.access_scopes,
            )
            if not self.storage_shim.store_session(offline_session):
                raise AssertionError("Failed to store session.")
        if self.app_installed_handler:
            self.app_installed_handler.on_app_installed(self, installed_shop)

    """
    Agnostic utils
    """

    def extract_shop_name(self, shop_host):
        return extract_shop_name(shop_host, self.config.myshopify_domain)

    def validate_hmac(self, params):
        try:
            timestamp = int(params.get("timestamp", 0))
        except ValueError:
            timestamp = 0
        if not self.check_for_replay(timestamp):
            raise InvalidState("Likely replay attack, timestamp is too old.")
        elif not self.check_hmac_matches(
            self.calculate_hmac(self.config.api_secret, params.items()).encode("utf8"),
            (params.get("hmac") or "").encode("utf8"),
        ):
            raise InvalidState("HMAC signature does not match.")

    def check_for_replay(self, callback_timestamp, allow_seconds=DAY_IN_SECONDS):
        return callback_timestamp >= time.time() - allow_seconds

    def check_hmac_matches(self, our_hmac, hmac_to_check):
        if not hmac_to_check:
            return False
        return hmac.compare_digest(our_hmac, hmac_to_check)

    def calculate_hmac(self, api_secret, param_items):
        encoded_params = self.encode_params_for_hmac(param_items)
        # Generate the hex digest for the sorted parameters using the secret.
        return hmac.new(
            api_secret.encode("utf8"), encoded_params.encode("utf8"), hashlib.sha256
        ).hexdigest()

    def encode_params_for_hmac(self, param_items):
        """
        Encode params with special shopify rules.

        RULE #1: ("k[]", [1,2]) is converted to ("k", '["1", "2"]')
        RULE #2: safe chars are ":/" for whatever reason.
        """
        params_to_encode = []
        for (k, v) in sorted(param_items):
            if k == "hmac":
                continue
            elif k.endswith("[]"):
                k = k[:-2]
                v = ", ".join(['"{}"'.format(v_item) for v_item in v])
            params_to_encode.append((k, v))

        return urlencode(params_to_encode, safe=":/")

    def request_access_token(self, shop_host, grant_code, api_key, api_secret):
        """
        Use grant code from shopify to fetch the access token using a post request.

        Exactly one attempt is made.  Returns a 2-tuple of (access_token, access_scopes).
        """
        try:
            response = requests.post(
                f"https://{shop_host}/admin/oauth/access_token",
                json={
                    "client_id": api_key,
                    "client_secret": api_secret,
                    "code": grant_code,
                },
                headers={"Accept": "application/json"},
                timeout=self.config.exchange_timeout_seconds,
            )
        except requests.Timeout as e:
            logger.error("Token exchange timed out for shop: %s", shop_host)
            raise Timeout(f"Token exchange timed out: {e}")
        except requests.RequestException as e:
            logger.error("Token exchange request failed for shop %s: %s", shop_host, e)
            raise TokenExchangeFailed(f"Token exchange request failed: {e}")

        if not 200 <= response.status_code < 300:
            logger.error(
                "Token exchange for shop %s returned status %s",
                shop_host,
                response.status_code,
            )
            raise TokenExchangeFailed(
                f"Failed to get access token, status {response.status_code}",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        try:
            json_payload = response.json()
            access_token = json_payload["access_token"]
            scope = json_payload.get("scope")
        except (ValueError, KeyError, TypeError, AttributeError):
            access_token = scope = None
        if not access_token or not isinstance(access_token, str):
            raise TokenExchangeFailed(
                "Token exchange response has no access token.",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        if scope is not None and not isinstance(scope, str):
            raise TokenExchangeFailed(
                "Token exchange response has a malformed scope.",
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        return access_token, parse_scopes(scope)

    def get_nonce(self, charset=string.ascii_lowercase + string.digits, length=15):
        """Get a random system of `length` characters from given `charset`."""
        return "".join(random.SystemRandom().choice(charset) for _ in range(length))
