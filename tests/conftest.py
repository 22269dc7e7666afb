import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the config environment and configure logging before collection."""
    os.environ["PROTEAN_ENV"] = session.config.option.env

    from commerce.utils.logging import configure_logging

    configure_logging()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))

        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/bdd/" in test_path:
            item.add_marker(pytest.mark.bdd)


@pytest.fixture(autouse=True)
def reset_adapters():
    """Start every test with fresh fake collaborators and an empty quote cache."""
    yield

    from commerce.collaborators import reset_collaborators
    from commerce.gateway import reset_gateway
    from commerce.pricing.shipping_cache import shipping_quote_cache

    reset_collaborators()
    reset_gateway()
    shipping_quote_cache.clear()
