"""
directory/sync.py -- Merge directory records into the local inventory.

One pass per entity type (users, computers):

  1. fetch from the directory (outside any transaction)
  2. BEGIN
  3. count active ldap rows
  4. mark every ldap row inactive
  5. upsert each fetched record by identity, reactivating it
  6. count again; deactivated = max(0, before - after)
  7. COMMIT (any exception rolls the whole pass back)

Rows are never deleted, so a license assigned to someone who left keeps its
assigned_user_id and points at an inactive user. If they come back, the same
row (same id) is reactivated and the link is live again.

Only this module writes source='ldap' rows.
"""

import logging

from directory.client import DirectoryClient, DirectoryUnavailable
from inventory.store import InventoryStore

logger = logging.getLogger("licensedesk.sync")


class Reconciler:
    def __init__(self, client: DirectoryClient, store: InventoryStore) -> None:
        self._client = client
        self._store = store

    def sync_users(self) -> tuple[int, int]:
        """Run one users pass. Returns (synced, deactivated).

        Raises DirectoryUnavailable before touching storage if the fetch fails.
        """
        records = self._client.fetch_users()
        store = self._store
        with store.transaction() as conn:
            before = store.count_active_ldap_users(conn)
            store.mark_ldap_users_inactive(conn)
            for record in records:
                store.upsert_ldap_user(conn, record.login, record.display_name, record.email)
            after = store.count_active_ldap_users(conn)
        deactivated = max(0, before - after)
        logger.info("LDAP users sync: synced=%d deactivated=%d", len(records), deactivated)
        return len(records), deactivated

    def sync_computers(self) -> tuple[int, int]:
        """Run one computers pass. Returns (synced, deactivated)."""
        records = self._client.fetch_computers()
        store = self._store
        with store.transaction() as conn:
            before = store.count_active_ldap_computers(conn)
            store.mark_ldap_computers_inactive(conn)
            for record in records:
                store.upsert_ldap_computer(conn, record.name, record.host_address, record.description)
            after = store.count_active_ldap_computers(conn)
        deactivated = max(0, before - after)
        logger.info("LDAP computers sync: synced=%d deactivated=%d", len(records), deactivated)
        return len(records), deactivated

    def sync_all(self) -> dict[str, tuple[int, int]]:
        """Users then computers. A failure in one is logged and does not stop the other.

        Returns the results of the passes that succeeded, keyed by
        "users" / "computers".
        """
        results: dict[str, tuple[int, int]] = {}
        try:
            results["users"] = self.sync_users()
        except DirectoryUnavailable as exc:
            logger.warning("LDAP users sync skipped: %s", exc)
        except Exception:
            logger.exception("LDAP users sync failed")
        try:
            results["computers"] = self.sync_computers()
        except DirectoryUnavailable as exc:
            logger.warning("LDAP computers sync skipped: %s", exc)
        except Exception:
            logger.exception("LDAP computers sync failed")
        return results
