"""
Build ShopInstallConfig from the environment or from pyramid settings.
"""
import logging
import os

from . import ShopInstallConfig, STATE_MODES
from .errors import ConfigError
from .scopes import parse_scopes

logger = logging.getLogger(__name__)


# Config field name -> environment variable name.
ENV_NAMES = {
    "api_key": "SHOPIFY_API_KEY",
    "api_secret": "SHOPIFY_API_SECRET",
    "host_name": "SHOPIFY_HOST_NAME",
    "access_scopes": "SHOPIFY_SCOPES",
    "state_mode": "SHOPIFY_STATE_MODE",
    "verify_hmac": "SHOPIFY_VERIFY_HMAC",
    "exchange_timeout_seconds": "SHOPIFY_EXCHANGE_TIMEOUT",
}


REQUIRED = ("api_key", "api_secret", "host_name")


TRUTHY = ("1", "true", "yes", "on")


def config_from_env(environ=None):
    environ = os.environ if environ is None else environ
    return build_config(
        {name: environ.get(env_name) for name, env_name in ENV_NAMES.items()},
        lambda name: ENV_NAMES[name],
    )


def config_from_settings(settings, environ=None):
    """Read `shopify.*` pyramid settings, falling back to the environment."""
    environ = os.environ if environ is None else environ
    values = {
        name: settings.get(f"shopify.{name}") or environ.get(env_name)
        for name, env_name in ENV_NAMES.items()
    }
    return build_config(values, lambda name: f"shopify.{name} or {ENV_NAMES[name]}")


def build_config(values, describe):
    missing = [describe(name) for name in REQUIRED if not values.get(name)]
    if missing:
        raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    kwargs = {name: values[name] for name in REQUIRED}
    if values.get("access_scopes"):
        kwargs["access_scopes"] = tuple(parse_scopes(values["access_scopes"]))
    if values.get("state_mode"):
        if values["state_mode"] not in STATE_MODES:
            raise ConfigError(
                f"{describe('state_mode')} must be one of {', '.join(STATE_MODES)}"
            )
        kwargs["state_mode"] = values["state_mode"]
    if values.get("verify_hmac"):
        kwargs["verify_hmac"] = str(values["verify_hmac"]).lower() in TRUTHY
    if values.get("exchange_timeout_seconds"):
        try:
            kwargs["exchange_timeout_seconds"] = float(
                values["exchange_timeout_seconds"]
            )
        except ValueError:
            raise ConfigError(f"{describe('exchange_timeout_seconds')} is not a number")
    return ShopInstallConfig(**kwargs)


def log_config(config):
    """Log what is configured without logging the secrets themselves."""
    logger.info(
        "Config loaded: has_api_key=%s has_api_secret=%s redirect_uri=%s "
        "scopes=%s state_mode=%s verify_hmac=%s",
        bool(config.api_key),
        bool(config.api_secret),
        config.get_redirect_uri(),
        ",".join(config.access_scopes),
        config.state_mode,
        config.verify_hmac,
    )
