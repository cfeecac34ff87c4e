from zope.interface import Interface


class IStorageShim(Interface):
    def store_session(session):
        """Insert or replace the session keyed by its id."""

    def load_session(session_id):
        """Return the session or None."""

    def remove_session_by_id(session_id):
        pass

    def remove_all_shop_sessions(shop_name):
        pass


class ISessionSerializer(Interface):
    pass


class IAppInstalledHandler(Interface):
    def on_app_installed(service, installed_shop):
        """Called once the access token for a shop has been obtained."""


class IDiscountStore(Interface):
    def create(discount_request):
        """Store a new discount and return it with its id."""

    def list():
        pass

    def delete(discount_id):
        """Remove the discount, return True if it existed."""
