"""
Authentication Package

Keycloak OIDC login for the two Ghost realms.

Modules:
- members: member realm (/auth/member/*), Admin API provisioning + magic link
- staff: staff realm (/auth/admin/*), forged admin session cookie
- oidc: discovery, authorization URLs, code exchange, ID token verification
- login_state: per-login state/nonce cookie
- pages: generic HTML error pages
- utils: identifiers, tokens and Ghost's cookie signature
"""
