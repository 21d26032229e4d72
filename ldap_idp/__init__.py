"""
LDAP identity provider for ORY Hydra.

Resolves Hydra's login, consent and logout challenges by authenticating users
against an LDAP directory and mapping directory attributes to OIDC claims.
"""
