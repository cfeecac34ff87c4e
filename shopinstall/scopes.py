UNAUTHENTICATED_WRITE_PREFIX = "unauthenticated_write_"


UNAUTHENTICATED_READ_PREFIX = "unauthenticated_read_"


WRITE_PREFIX = "write_"


READ_PREFIX = "read_"


def parse_scopes(scope_str):
    """Convert shopify's comma separated scope string into a list."""
    if not scope_str:
        return []
    return [scope.strip() for scope in scope_str.split(",") if scope.strip()]


def get_implied_scopes(scopes):
    implied_scopes = set()
    for scope in scopes:
        if scope.startswith(UNAUTHENTICATED_WRITE_PREFIX):
            implied_scopes.add(
                UNAUTHENTICATED_READ_PREFIX
                + scope.removeprefix(UNAUTHENTICATED_WRITE_PREFIX)
            )
        elif scope.startswith(WRITE_PREFIX):
            implied_scopes.add(READ_PREFIX + scope.removeprefix(WRITE_PREFIX))
    return implied_scopes


def scopes_have_changed(installed_scopes, expected_scopes):
    # @NOTE: Granted scopes that imply the expected ones are enough,
    # ie. write_discounts covers read_discounts.
    return (
        not set(expected_scopes)
        .union(get_implied_scopes(expected_scopes))
        .issubset(set(installed_scopes).union(get_implied_scopes(installed_scopes)))
    )
