import json
from unittest.mock import Mock

import pytest

from shopinstall import ShopInstallConfig


def make_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    if payload is None:
        response.json.side_effect = ValueError("No JSON")
        response.text = ""
    else:
        response.json.return_value = payload
        response.text = json.dumps(payload)
    return response


@pytest.fixture
def install_config():
    return ShopInstallConfig(
        api_key="key_abc",
        api_secret="secret_xyz",
        host_name="app.example.com",
    )
