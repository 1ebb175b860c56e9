"""
User identity microservice core.

See ``userms.auth`` for accounts, roles, permissions and session tokens.
"""

__version__ = "1.0.0"
