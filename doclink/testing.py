"""Helpers for test suites. Production code should not import this module."""
from doclink import connector_context
from doclink.connector import ClientFactory, Connector


def reset_default_connector():
    """Discards the process default connector so the next `get_connector()` creates a fresh one.

    The discarded connector is not closed; tests that connected it should close it themselves.
    """
    connector_context._default_connector = None


def create_test_connector(client_factory: ClientFactory | None = None) -> Connector:
    """Creates a connector that shares no state with the process default."""
    return Connector(client_factory)
