"""execgate - HTTP routes that run external commands.

Each configured route resolves its argument templates against the request,
starts a process, and answers with a JSON status, the collected output, or a
live server-sent event stream.
"""

from execgate.app import create_app
from execgate.config import CommandDescriptor, GatewayConfig, RouteConfig, Settings
from execgate.handler import ExecHandler

__version__ = "0.1.0"
__all__ = [
    "CommandDescriptor",
    "ExecHandler",
    "GatewayConfig",
    "RouteConfig",
    "Settings",
    "__version__",
    "create_app",
]
