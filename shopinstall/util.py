import base64
import binascii
import re

MYSHOPIFY_DOMAIN = "myshopify.com"


def build_shop_host(shop_name, myshopify_domain=MYSHOPIFY_DOMAIN):
    return f"{shop_name}.{myshopify_domain}"


def extract_shop_name(shop_host, myshopify_domain=MYSHOPIFY_DOMAIN):
    suffix = "." + myshopify_domain
    if shop_host.endswith(suffix):
        return shop_host[: -len(suffix)]
    return None


def get_shop_host_re(myshopify_domain=MYSHOPIFY_DOMAIN):
    return re.compile(
        r"^[a-zA-Z0-9][a-zA-Z0-9-]*\." + re.escape(myshopify_domain) + r"\Z"
    )


def is_valid_shop_host(shop_host, myshopify_domain=MYSHOPIFY_DOMAIN):
    return bool(shop_host) and bool(
        get_shop_host_re(myshopify_domain).match(shop_host)
    )


def encode_state(shop_host):
    """Encode the shop host as the state sent through shopify."""
    return base64.b64encode(shop_host.encode("utf8")).decode("ascii")


def decode_state(state):
    """Reverse `encode_state`, returns None when state is not valid base64 text."""
    try:
        return base64.b64decode(state.encode("ascii"), validate=True).decode("utf8")
    except (binascii.Error, UnicodeError):
        return None
