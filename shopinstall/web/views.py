import logging

from pyramid.httpexceptions import HTTPException

from ..discounts import DiscountRequest
from ..errors import (
    ShopInstallError,
    UnknownError,
)
from .pages import render_failure_page, render_installed_page
from .pyramid_shim import PyramidWebShim

logger = logging.getLogger(__name__)


SERVICE_KEY = "shopinstall.service"


DISCOUNT_STORE_KEY = "shopinstall.discount_store"


def get_service(request):
    return request.registry[SERVICE_KEY]


def get_discount_store(request):
    return request.registry[DISCOUNT_STORE_KEY]


def home(request):
    web_shim = PyramidWebShim(request)
    return web_shim.response_json(
        {
            "message": "Shopify app is running",
            "endpoints": {
                "auth": request.route_path("auth"),
                "callback": request.route_path("auth_callback"),
                "discounts": request.route_path("discounts"),
            },
        }
    )


def auth(request):
    """Redirect to shopify to authorize the app for the requested shop."""
    web_shim = PyramidWebShim(request)
    try:
        url = get_service(request).begin_install(web_shim.get_param("shop"))
    except ShopInstallError as e:
        return web_shim.response_json({"error": e.public_message}, status=e.status_code)
    except Exception:
        logger.exception("Unexpected error while starting install")
        e = UnknownError()
        return web_shim.response_json({"error": e.public_message}, status=e.status_code)
    return web_shim.redirect_302_url(url)


def auth_callback(request):
    """Finish the install and render a page for the merchant."""
    web_shim = PyramidWebShim(request)
    params = web_shim.get_params(["code", "shop", "state"])
    try:
        installed_shop = get_service(request).complete_install(
            params["code"],
            params["shop"],
            params["state"],
            params=dict(web_shim.get_params()),
        )
    except ShopInstallError as e:
        logger.info("Install callback failed for shop %r: %s", params["shop"], e)
        return web_shim.response_html(
            render_failure_page(e.public_message), status=e.status_code
        )
    except Exception:
        logger.exception("Unexpected error during install callback")
        e = UnknownError()
        return web_shim.response_html(
            render_failure_page(e.public_message), status=e.status_code
        )
    return web_shim.response_html(render_installed_page(installed_shop.shop))


def list_discounts(request):
    web_shim = PyramidWebShim(request)
    discounts = get_discount_store(request).list()
    return web_shim.response_json([discount.to_json() for discount in discounts])


def create_discount(request):
    web_shim = PyramidWebShim(request)
    try:
        discount_request = DiscountRequest.from_json(web_shim.get_request_json_body())
    except ShopInstallError as e:
        return web_shim.response_json({"error": e.public_message}, status=e.status_code)
    discount = get_discount_store(request).create(discount_request)
    logger.info("Created discount %s", discount.id)
    return web_shim.response_json(discount.to_json(), status=201)


def delete_discount(request):
    web_shim = PyramidWebShim(request)
    discount_id = web_shim.get_matchdict_int("id")
    # Deleting a missing discount is not an error, neither is an id that
    # could never exist.
    if discount_id is not None and get_discount_store(request).delete(discount_id):
        logger.info("Deleted discount %s", discount_id)
    return web_shim.response_204()


def unknown_error(exc, request):
    """Last resort for anything the views did not handle."""
    if isinstance(exc, HTTPException):
        return exc
    logger.error("Unhandled error", exc_info=exc)
    web_shim = PyramidWebShim(request)
    e = UnknownError()
    return web_shim.response_json({"error": e.public_message}, status=e.status_code)
