"""
Directory Package

Authentication and attribute lookups against the LDAP directory.

Modules:
- ldap: DirectoryClient protocol and the ldap3 based LdapDirectory
"""

from .ldap import DirectoryClient, LdapDirectory

__all__ = [
    "DirectoryClient",
    "LdapDirectory",
]
