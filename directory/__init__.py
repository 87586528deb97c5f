"""directory/ -- LDAP client, reconciliation and the background sync scheduler.

Layer rule: directory/ may import from core/ and inventory/ only.
"""
