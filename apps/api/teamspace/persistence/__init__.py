from teamspace.persistence.gateway import PersistenceGateway
from teamspace.persistence.local_store import LocalStore

__all__ = ["LocalStore", "PersistenceGateway"]
