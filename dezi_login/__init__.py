"""
Dezi login gateway: OpenID Connect Authorization Code + PKCE login against
the Dezi identity provider, with encrypted and signed userinfo.
"""

__version__ = "1.0.0"
