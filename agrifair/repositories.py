import time
import uuid

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from agrifair.identity import Identity, User
from agrifair.storage import USERS, COMPLAINTS, FEATURED_FARMERS, StorageError, UserExistsError


def _newest_first(rows):
    return sorted(rows, key=lambda r: r.get("date") or "", reverse=True)


# -----------------------------------------------------
#   Local repository (JSON files)
# -----------------------------------------------------
class LocalRepository:
    def __init__(self, store):
        self.store = store

    @staticmethod
    def mint_id():
        return f"local-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"

    # users
    def find_user_by_mobile(self, mobile):
        for rec in self.store.read(USERS):
            if rec.get("mobile") == mobile:
                try:
                    return User.from_record(rec)
                except (KeyError, TypeError):
                    print(f"[DB] Skipping malformed local user for {mobile}")
                    return None
        return None

    def create_user(self, username, mobile, role="user", identity=None):
        user = User(identity or Identity.local(self.mint_id()), username, mobile, role)
        return self.save_user(user)

    def save_user(self, user):
        """Insert or replace the user keyed by mobile."""
        users = [u for u in self.store.read(USERS) if u.get("mobile") != user.mobile]
        users.append(user.to_record())
        self.store.write(USERS, users)
        return user

    # otp mirroring is only meaningful on a shared store
    def set_otp(self, mobile, code, issued_at):
        return False

    def get_otp(self, mobile):
        return None

    def clear_otp(self, mobile):
        return None

    # complaints
    def list_complaints(self, user_id):
        rows = [c for c in self.store.read(COMPLAINTS) if c.get("userId") == user_id]
        return list(reversed(rows))

    def create_complaint(self, complaint):
        rec = dict(complaint)
        rec.setdefault("id", str(int(time.time() * 1000)))
        rows = self.store.read(COMPLAINTS)
        rows.append(rec)
        self.store.write(COMPLAINTS, rows)
        return rec

    # featured farmers
    def list_featured_farmers(self):
        return _newest_first(self.store.read(FEATURED_FARMERS))

    def upsert_featured_farmer(self, farmer):
        rows = self.store.read(FEATURED_FARMERS)
        for i, row in enumerate(rows):
            if row.get("userId") == farmer["userId"]:
                rows[i] = dict(farmer)
                break
        else:
            rows.append(dict(farmer))
        self.store.write(FEATURED_FARMERS, rows)
        return dict(farmer)

    def delete_featured_farmer(self, user_id):
        rows = self.store.read(FEATURED_FARMERS)
        kept = [r for r in rows if r.get("userId") != user_id]
        if len(kept) == len(rows):
            return False
        self.store.write(FEATURED_FARMERS, kept)
        return True


# -----------------------------------------------------
#   Mongo repository (remote store)
# -----------------------------------------------------
class MongoRepository:
    """Remote store. Ids are the string form of each document's ``_id``."""

    def __init__(self, db):
        self.db = db
        self._indexed = False

    def _coll(self, name):
        if not self._indexed:
            self.db[USERS].create_index("mobile", unique=True)
            self.db[FEATURED_FARMERS].create_index("user_id", unique=True)
            self.db[COMPLAINTS].create_index("user_id")
            self._indexed = True
        return self.db.get_collection(name)

    @staticmethod
    def _user(doc):
        return User(
            identity=Identity.remote(doc["_id"]),
            username=doc.get("username") or "",
            mobile=doc["mobile"],
            role=doc.get("role") or "user",
        )

    # users
    def find_user_by_mobile(self, mobile):
        doc = self._coll(USERS).find_one({"mobile": mobile})
        return self._user(doc) if doc else None

    def create_user(self, username, mobile, role="user"):
        coll = self._coll(USERS)
        try:
            res = coll.insert_one({"username": username, "mobile": mobile, "role": role})
        except DuplicateKeyError:
            raise UserExistsError(mobile)
        return User(Identity.remote(res.inserted_id), username, mobile, role)

    def find_or_create_user(self, username, mobile, role="user"):
        """Return (user, created). A concurrent registration of the same
        mobile resolves to the existing user."""
        found = self.find_user_by_mobile(mobile)
        if found is not None:
            return found, False
        try:
            return self.create_user(username, mobile, role), True
        except UserExistsError:
            return self.find_user_by_mobile(mobile), False

    def set_otp(self, mobile, code, issued_at):
        res = self._coll(USERS).update_one(
            {"mobile": mobile},
            {"$set": {"otp_code": code, "otp_issued_at": issued_at}},
        )
        return res.matched_count > 0

    def get_otp(self, mobile):
        doc = self._coll(USERS).find_one({"mobile": mobile}, {"otp_code": 1, "otp_issued_at": 1})
        if not doc or not doc.get("otp_code"):
            return None
        return doc["otp_code"], doc.get("otp_issued_at")

    def clear_otp(self, mobile):
        self._coll(USERS).update_one(
            {"mobile": mobile}, {"$unset": {"otp_code": "", "otp_issued_at": ""}}
        )

    # complaints
    @staticmethod
    def _complaint(doc):
        return {
            "id": str(doc["_id"]),
            "userId": doc.get("user_id"),
            "traderName": doc.get("trader_name"),
            "issue": doc.get("issue"),
            "date": doc.get("date"),
            "status": doc.get("status", "Pending"),
        }

    def list_complaints(self, user_id):
        cur = self._coll(COMPLAINTS).find({"user_id": user_id}).sort("_id", DESCENDING)
        return [self._complaint(d) for d in cur]

    def create_complaint(self, complaint):
        doc = {
            "user_id": complaint["userId"],
            "trader_name": complaint["traderName"],
            "issue": complaint["issue"],
            "date": complaint["date"],
            "status": complaint.get("status", "Pending"),
        }
        res = self._coll(COMPLAINTS).insert_one(doc)
        doc["_id"] = res.inserted_id
        return self._complaint(doc)

    # featured farmers
    @staticmethod
    def _farmer(doc):
        return {
            "userId": doc.get("user_id"),
            "name": doc.get("name"),
            "bio": doc.get("bio"),
            "photo": doc.get("photo"),
            "date": doc.get("date"),
        }

    def list_featured_farmers(self):
        cur = self._coll(FEATURED_FARMERS).find({}).sort("date", DESCENDING)
        return [self._farmer(d) for d in cur]

    def upsert_featured_farmer(self, farmer):
        doc = {
            "user_id": farmer["userId"],
            "name": farmer.get("name"),
            "bio": farmer.get("bio"),
            "photo": farmer.get("photo"),
            "date": farmer.get("date"),
        }
        self._coll(FEATURED_FARMERS).replace_one({"user_id": doc["user_id"]}, doc, upsert=True)
        return self._farmer(doc)

    def delete_featured_farmer(self, user_id):
        res = self._coll(FEATURED_FARMERS).delete_one({"user_id": user_id})
        return res.deleted_count > 0


# -----------------------------------------------------
#   Remote-first policy with local safety net
# -----------------------------------------------------
class FallbackRepository:
    """Prefers the remote store and degrades to the local one.

    Reads come from the remote store when it answers, otherwise from the
    local files. Writes go to the remote store first and are then mirrored
    locally with whatever id is known; the local write is the safety net and
    only its failure is raised. OTP mirroring is best-effort and remote only.
    """

    def __init__(self, local, remote=None):
        self.local = local
        self.remote = remote

    def _try_remote(self, op, *args):
        """Run ``op`` on the remote store. Returns (ok, result)."""
        if self.remote is None:
            return False, None
        try:
            return True, getattr(self.remote, op)(*args)
        except UserExistsError:
            raise
        except Exception as e:
            print(f"[DB] remote {op} failed, using local store: {e}")
            return False, None

    def status(self):
        return {"isCloud": self.remote is not None, "dataDir": self.local.store.data_dir}

    # users
    def find_user_by_mobile(self, mobile):
        ok, user = self._try_remote("find_user_by_mobile", mobile)
        if ok and user is not None:
            return user
        return self.local.find_user_by_mobile(mobile)

    def find_remote_user(self, mobile):
        ok, user = self._try_remote("find_user_by_mobile", mobile)
        return user if ok else None

    def create_user(self, username, mobile, role="user"):
        ok, user = self._try_remote("create_user", username, mobile, role)
        if ok and user is not None:
            try:
                self.local.save_user(user)
            except StorageError as e:
                print("[DB] local mirror of new user failed:", e)
            return user
        return self.local.create_user(username, mobile, role)

    def set_otp(self, mobile, code, issued_at):
        ok, mirrored = self._try_remote("set_otp", mobile, code, issued_at)
        return bool(ok and mirrored)

    def get_otp(self, mobile):
        ok, found = self._try_remote("get_otp", mobile)
        return found if ok else None

    def clear_otp(self, mobile):
        self._try_remote("clear_otp", mobile)

    # complaints
    def list_complaints(self, user_id):
        ok, rows = self._try_remote("list_complaints", user_id)
        if ok:
            return rows
        return self.local.list_complaints(user_id)

    def create_complaint(self, complaint):
        ok, saved = self._try_remote("create_complaint", complaint)
        if not ok:
            return self.local.create_complaint(complaint)
        try:
            self.local.create_complaint(saved)
        except StorageError as e:
            print("[DB] local mirror of complaint failed:", e)
        return saved

    # featured farmers
    def list_featured_farmers(self):
        ok, rows = self._try_remote("list_featured_farmers")
        if ok:
            return rows
        return self.local.list_featured_farmers()

    def upsert_featured_farmer(self, farmer):
        ok, saved = self._try_remote("upsert_featured_farmer", farmer)
        try:
            local_saved = self.local.upsert_featured_farmer(farmer)
        except StorageError:
            if not ok:
                raise
            print("[DB] local mirror of featured farmer failed")
            local_saved = None
        return saved if ok else local_saved

    def delete_featured_farmer(self, user_id):
        ok, removed_remote = self._try_remote("delete_featured_farmer", user_id)
        removed_local = self.local.delete_featured_farmer(user_id)
        return bool(removed_remote) or removed_local
