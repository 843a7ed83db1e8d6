"""Platform integrations -- REST API.

::

    from speech_keyboard.integrations.server import create_app
"""

from speech_keyboard.integrations.server import create_app

__all__ = ["create_app"]
