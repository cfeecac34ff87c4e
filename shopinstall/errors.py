"""
Errors raised during the install handshake and by the discount api.

Every error carries the http status it maps to and a generic message that
is safe to show to the client.  The detailed message stays in the exception
for logging.
"""


class ShopInstallError(Exception):
    status_code = 500
    public_message = "Installation failed, please try again."

    def __init__(self, message=None):
        super().__init__(message or self.public_message)


class MissingShop(ShopInstallError):
    status_code = 400
    public_message = "Missing shop parameter"


class InvalidShopFormat(ShopInstallError):
    status_code = 400
    public_message = "Invalid shop format"


class MissingParameters(ShopInstallError):
    status_code = 400
    public_message = "Missing required parameters"


class InvalidState(ShopInstallError):
    # Forgery or a callback from some other flow, not the caller's fault.
    status_code = 500


class TokenExchangeFailed(ShopInstallError):
    status_code = 500

    def __init__(self, message=None, upstream_status=None, upstream_body=None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class Timeout(TokenExchangeFailed):
    pass


class UnknownError(ShopInstallError):
    status_code = 500


class ConfigError(Exception):
    pass


class DiscountValidationError(ShopInstallError):
    status_code = 400
    public_message = "Invalid discount"

    def __init__(self, message=None):
        super().__init__(message)
        # Validation messages only describe the submitted body.
        self.public_message = str(self)
