"""
Child Finder front end.

Authenticates users against an OpenID Connect identity provider, keeps a
server-side session for them, and accepts bearer tokens as an alternate
credential for profile pages.
"""

__version__ = "1.0.0"
