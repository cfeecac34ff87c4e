import logging
import os

from pyramid.config import Configurator

from .. import MemoryStorageShim, ShopInstallService
from ..config import config_from_env, config_from_settings, log_config
from ..discounts import MemoryDiscountStore
from . import views

logger = logging.getLogger(__name__)


def make_app(
    install_config,
    storage_shim=None,
    discount_store=None,
    app_installed_handler=None,
    settings=None,
):
    """
    Build the wsgi app.

    Access tokens and discounts are kept in memory unless other stores are given.
    """
    service = ShopInstallService(
        config=install_config,
        storage_shim=storage_shim if storage_shim is not None else MemoryStorageShim(),
        app_installed_handler=app_installed_handler,
    )
    with Configurator(settings=settings) as config:
        config.registry[views.SERVICE_KEY] = service
        config.registry[views.DISCOUNT_STORE_KEY] = (
            discount_store if discount_store is not None else MemoryDiscountStore()
        )

        config.add_route("home", "/")
        config.add_route("auth", "/auth")
        config.add_route("auth_callback", install_config.callback_path)
        config.add_route("discounts", "/api/discounts")
        config.add_route("discount", "/api/discounts/{id}")

        config.add_view(views.home, route_name="home", request_method="GET")
        config.add_view(views.auth, route_name="auth", request_method="GET")
        config.add_view(
            views.auth_callback, route_name="auth_callback", request_method="GET"
        )
        config.add_view(
            views.list_discounts, route_name="discounts", request_method="GET"
        )
        config.add_view(
            views.create_discount, route_name="discounts", request_method="POST"
        )
        config.add_view(
            views.delete_discount, route_name="discount", request_method="DELETE"
        )
        config.add_exception_view(views.unknown_error, context=Exception)
        return config.make_wsgi_app()


def main(global_config, **settings):
    """Paste deploy entry point."""
    install_config = config_from_settings(settings)
    log_config(install_config)
    return make_app(install_config, settings=settings)


def serve():
    """Serve the app with waitress, configured from the environment and .env."""
    from dotenv import load_dotenv
    import waitress

    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    install_config = config_from_env()
    log_config(install_config)
    port = int(os.environ.get("PORT", "3000"))
    logger.info("Server running on port %s", port)
    waitress.serve(make_app(install_config), host="0.0.0.0", port=port)
