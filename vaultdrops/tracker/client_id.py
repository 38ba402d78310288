"""Stable anonymous client identifier.

One identifier is created per installation and reused for every publish,
so republishing replaces this client's earlier submission instead of
adding to it.
"""

import uuid

from vaultdrops.common.logging import get_logger
from vaultdrops.tracker.local_store import KeyValueStore

logger = get_logger(__name__)

CLIENT_ID_KEY = "vd-client-id"


def new_client_id() -> str:
    return f"vd_{uuid.uuid4().hex}"


def get_client_id(store: KeyValueStore) -> str:
    """Read the persisted client id, creating and persisting one if absent.

    If storage is unavailable an ephemeral id is returned; it is only stable
    for the current session.
    """
    try:
        client_id = store.get_item(CLIENT_ID_KEY)
        if not client_id:
            client_id = new_client_id()
            store.set_item(CLIENT_ID_KEY, client_id)
            logger.info("Created client id", {"client_id": client_id})
        return client_id
    except (OSError, ValueError) as e:
        logger.warning("Client id storage unavailable, using ephemeral id", {"error": str(e)})
        return new_client_id()
