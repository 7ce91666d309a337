from .authenticator import Authenticator, AuthenticationError, resolve_bind_password

__all__ = ["Authenticator", "AuthenticationError", "resolve_bind_password"]
