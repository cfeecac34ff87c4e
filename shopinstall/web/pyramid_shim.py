from dataclasses import dataclass

from pyramid.request import Request
from pyramid.response import Response
from pyramid.httpexceptions import HTTPFound, HTTPNoContent

from ..errors import DiscountValidationError


@dataclass
class PyramidWebShim:
    """Shim between the install service and pyramid for web tasks."""

    # The current request.
    request: Request

    def get_param(self, name, default=None):
        # @TODO: We might need to allow for getall.
        return self.request.GET.get(name, default)

    def get_params(self, param_names=None, default=None):
        if param_names:
            params = {name: self.request.GET.get(name, default) for name in param_names}
        else:
            params = self.request.GET.copy()
        return params

    def get_matchdict_int(self, name):
        try:
            return int(self.request.matchdict[name])
        except (KeyError, ValueError):
            return None

    def get_request_json_body(self):
        try:
            return self.request.json_body
        except ValueError:
            raise DiscountValidationError("Request body is not valid json.")

    def redirect_302_url(self, url):
        return HTTPFound(url)

    def response_html(self, content, status=200):
        return Response(
            text=content, status=status, content_type="text/html", charset="utf-8"
        )

    def response_json(self, data, status=200):
        return Response(json_body=data, status=status, content_type="application/json")

    def response_204(self):
        return HTTPNoContent()
