"""Adapters package - feed transports, connection management and the
activity subscription consumers talk to.

Import from the submodules directly (``greetbot.adapters.activity``,
``greetbot.adapters.events`` ...); the reducer in ``greetbot.engine``
depends on the event types here, so this package stays import-light.
"""
