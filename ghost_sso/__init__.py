"""
Ghost SSO bridge.

Signs Keycloak users into Ghost without modifying Ghost: members through
Ghost's own magic-link tokens, staff through a natively signed admin
session cookie.
"""

__version__ = "1.0.0"
