"""
Scrollwork.

Local sidecar agent that tracks an organization's language-model token
consumption and answers prompt cost-risk queries over a unix socket.
"""

__version__ = "0.1.0"
