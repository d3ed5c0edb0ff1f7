import os
import json

from pymongo import MongoClient


class StorageError(Exception):
    """Raised when a write could not be persisted to any store."""


class UserExistsError(Exception):
    """Raised when a user with the same mobile is already registered."""


USERS = "users"
COMPLAINTS = "complaints"
FEATURED_FARMERS = "featured_farmers"
COLLECTIONS = (USERS, COMPLAINTS, FEATURED_FARMERS)


# -----------------------------------------------------
#   Local JSON collections (fallback store)
# -----------------------------------------------------
class LocalStore:
    """One JSON file per collection under ``data_dir``.

    ``read`` never raises: a missing or malformed file is an empty
    collection. ``write`` replaces the whole collection.
    """

    def __init__(self, data_dir):
        self.data_dir = data_dir
        os.makedirs(self.data_dir, exist_ok=True)

    def path(self, collection):
        return os.path.join(self.data_dir, f"{collection}.json")

    def read(self, collection):
        fn = self.path(collection)
        if not os.path.exists(fn):
            return []
        try:
            with open(fn, "r", encoding="utf-8") as f:
                data = json.load(f)
        except Exception as e:
            print(f"[DB] Warning: failed to read {fn}: {e}")
            return []
        if not isinstance(data, list):
            print(f"[DB] Warning: {fn} does not hold a list; ignoring")
            return []
        return data

    def write(self, collection, records):
        fn = self.path(collection)
        tmp = fn + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(list(records), f, indent=2, ensure_ascii=False)
            os.replace(tmp, fn)
        except OSError as e:
            raise StorageError(f"Could not write {collection}: {e}") from e


# -----------------------------------------------------
#   MongoDB (remote store)
# -----------------------------------------------------
def connect_mongo(settings, client_factory=MongoClient):
    """Return a database handle, or None when running in Local Mode."""
    if not settings.mongodb_uri:
        print("[DB] MONGODB_URI not set. Running in Local Mode.")
        return None
    try:
        client = client_factory(settings.mongodb_uri)
        # Determine DB name: prefer explicit setting, else driver default, else 'agrifair'
        dbname = settings.mongodb_db
        if not dbname:
            try:
                dbname = client.get_default_database().name
            except Exception:
                dbname = None
        if not dbname:
            dbname = "agrifair"
        db = client[dbname]
        print(f"[DB] MongoDB connected, using database: {db.name}")
        return db
    except Exception as e:
        print("[DB] MongoDB init failed, running in Local Mode:", e)
        return None
