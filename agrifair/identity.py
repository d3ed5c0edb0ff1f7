from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Identity:
    """A user id tagged with where it came from.

    Local ids are minted by the file store before the remote store has seen
    the user; durable ids are assigned by the remote store.
    """
    value: str
    durable: bool

    @classmethod
    def local(cls, value):
        return cls(str(value), False)

    @classmethod
    def remote(cls, value):
        return cls(str(value), True)

    def __str__(self):
        return self.value


@dataclass
class User:
    identity: Identity
    username: str
    mobile: str
    role: str = "user"

    @property
    def id(self):
        return self.identity.value

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_record(self):
        return {
            "id": self.identity.value,
            "durable": self.identity.durable,
            "username": self.username,
            "mobile": self.mobile,
            "role": self.role,
        }

    # the session snapshot has the same shape as the local record
    to_session = to_record

    @classmethod
    def from_record(cls, rec):
        return cls(
            identity=Identity(str(rec["id"]), bool(rec.get("durable", False))),
            username=rec.get("username") or "",
            mobile=rec["mobile"],
            role=rec.get("role") or "user",
        )

    from_session = from_record

    def to_public(self):
        return {
            "id": self.id,
            "username": self.username,
            "mobile": self.mobile,
            "role": self.role,
            "isAdmin": self.is_admin,
        }


def ensure_durable(repo, user):
    """Return ``user`` carrying a durable id when the remote store allows it.

    The remote user is looked up by mobile and created on the fly from the
    known username/mobile if missing. Without a reachable remote store the
    local identity is kept as is.
    """
    if user.identity.durable or repo.remote is None:
        return user
    try:
        found, created = repo.remote.find_or_create_user(user.username, user.mobile, user.role)
        if created:
            print(f"[DB] Created remote user for {user.mobile} -> {found.id}")
    except Exception as e:
        print(f"[DB] Could not resolve durable id for {user.mobile}: {e}")
        return user

    resolved = replace(user, identity=found.identity)
    try:
        repo.local.save_user(resolved)
    except Exception as e:
        print("[DB] Local user re-key failed:", e)
    return resolved
