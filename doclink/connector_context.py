"""
Context management for the active connector

Applications should construct their connector explicitly and pass it to the code that needs it. For code that can't
take the connector as an argument, this module provides a context-local connector using Python's contextvars module,
backed by a lazily created process default.
"""
from contextvars import ContextVar, Token

from doclink.connector import Connector


active_connector: ContextVar[Connector] = ContextVar("active_connector")
"""A context variable that holds the connector set by `use_connector` for the current context."""

_default_connector: Connector | None = None


def get_connector() -> Connector:
    """Returns the connector set for the current context, falling back to the process default.

    The process default is created on first access and is not connected; call `connect` on it before use.
    """
    global _default_connector
    if connector := active_connector.get(None):
        return connector

    if _default_connector is None:
        _default_connector = Connector()

    return _default_connector


class UseConnector:
    """A context manager that makes a connector the active one within a `with` block.

    On exit the previously active connector, if any, is restored. It's generally more convenient to use the
    `use_connector()` function.

    Attributes:
        connector: The connector activated within the context.
    """
    def __init__(self, connector: Connector):
        self.connector = connector
        self._previous_context_token: Token | None = None

    def __enter__(self) -> Connector:
        self._previous_context_token = active_connector.set(self.connector)
        return self.connector

    def __exit__(self, *_):
        active_connector.reset(self._previous_context_token)


def use_connector(connector: Connector) -> UseConnector:
    """Factory function to create a `UseConnector` context manager.

    Example:
        ```python
        from doclink import Connector, get_connector, use_connector

        async def count_users():
            return await get_connector().count("users")

        async def main():
            with use_connector(reporting_connector):
                await count_users()  # Uses reporting_connector
        ```
    """
    return UseConnector(connector)
