"""
Admin API Package
=================

Client for the authorization server's (ORY Hydra) administrative endpoints.

Main Components:
----------------
- client.py: AdminApi protocol and the httpx based HydraAdminClient

Usage:
------
    from ldap_idp.admin import HydraAdminClient
    admin = HydraAdminClient("http://hydra:4445")
    challenge = await admin.get_login_challenge(login_challenge)
"""

from .client import AdminApi, HydraAdminClient

__all__ = ["AdminApi", "HydraAdminClient"]
