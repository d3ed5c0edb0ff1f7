import re
import time
import random

import requests

from agrifair.identity import User, ensure_durable
from agrifair.storage import UserExistsError

MODES = ("login", "signup")


def normalize_mobile(raw):
    """Return the 10-digit mobile number or None."""
    digits = re.sub(r"\D", "", str(raw or ""))
    return digits if len(digits) == 10 else None


def send_otp_sms(settings, mobile, code):
    """Deliver ``code`` through the configured SMS gateway.

    Returns True when the gateway accepted the message. Without a gateway the
    code only goes to the server console.
    """
    if not settings.sms_configured:
        print(f"[DEV MODE] No SMS gateway configured. OTP for {mobile}: {code}")
        return False

    payload = {"to": mobile, "message": f"Your AgriFair OTP is {code}"}
    headers = {"Content-Type": "application/json"}
    if settings.sms_gateway_key:
        headers["Authorization"] = f"Bearer {settings.sms_gateway_key}"
    try:
        r = requests.post(settings.sms_gateway_url, json=payload, headers=headers, timeout=10)
    except requests.RequestException as e:
        print("[SMS Exception]", e)
        return False
    if 200 <= r.status_code < 300:
        print(f"[SMS] OTP sent to {mobile}")
        return True
    print(f"[SMS ERROR] {r.status_code}: {r.text}")
    return False


def _fail(message, **extra):
    out = {"success": False, "message": message}
    out.update(extra)
    return out


class AuthService:
    """OTP login/signup and session handling.

    Every method that touches the client session takes it as an argument;
    the Flask session is passed in by the views, tests pass a plain dict.
    Session keys: ``user`` (snapshot of the signed-in user) and ``otp`` (the
    active challenge ``{mobile, code, issued_at}``).
    """

    def __init__(self, settings, repo, rng=None, clock=time.time, sender=send_otp_sms):
        self.settings = settings
        self.repo = repo
        self.rng = rng or random.SystemRandom()
        self.clock = clock
        self.sender = sender
        if settings.allow_master_otp:
            print("[AUTH] WARNING: master OTP bypass code is enabled")
        if settings.allow_mobile_suffix_otp:
            print("[AUTH] WARNING: last-4-digits OTP fallback is enabled")

    def is_admin_mobile(self, mobile):
        return bool(self.settings.admin_mobile) and mobile == self.settings.admin_mobile

    def assert_authority(self, user):
        # authority follows the mobile number, whatever role was stored
        if self.is_admin_mobile(user.mobile) and user.role != "admin":
            user.role = "admin"
        return user

    def persist(self, session, user):
        session["user"] = user.to_session()
        return user

    # -------------------------
    # Existence check / OTP issue
    # -------------------------
    def check_user_exists(self, mobile):
        return self.repo.find_user_by_mobile(mobile) is not None

    def request_otp(self, session, mobile, mode="login"):
        if mode not in MODES:
            return _fail("mode must be 'login' or 'signup'")

        exists = self.check_user_exists(mobile)
        if mode == "login" and not exists:
            return _fail("Mobile number not registered. Please sign up.", switch_to="signup")
        if mode == "signup" and exists:
            return _fail("User already registered. Please login.", switch_to="login")

        code = str(self.rng.randint(100000, 999999))
        issued_at = self.clock()
        # a new request supersedes any earlier challenge
        session["otp"] = {"mobile": mobile, "code": code, "issued_at": issued_at}

        if not self.repo.set_otp(mobile, code, issued_at):
            print(f"[OTP] Challenge for {mobile} not mirrored to remote store")

        if self.settings.otp_issue_delay:
            time.sleep(self.settings.otp_issue_delay)

        delivered = self.sender(self.settings, mobile, code)
        result = {"success": True, "message": "OTP sent successfully"}
        if not delivered:
            # demo notification in place of the SMS
            result["demo_otp"] = code
        return result

    # -------------------------
    # Verification
    # -------------------------
    def _fresh(self, issued_at):
        if issued_at is None:
            return False
        try:
            return self.clock() - float(issued_at) <= self.settings.otp_ttl_seconds
        except (TypeError, ValueError):
            return False

    def _match(self, session, mobile, code):
        s = self.settings
        if s.allow_master_otp and s.master_otp and code == s.master_otp:
            return "master"

        challenge = session.get("otp")
        if challenge and challenge.get("mobile") == mobile:
            if not self._fresh(challenge.get("issued_at")):
                session.pop("otp", None)
            elif code == challenge.get("code"):
                return "session"

        mirrored = self.repo.get_otp(mobile)
        if mirrored:
            remote_code, issued_at = mirrored
            if code == remote_code and self._fresh(issued_at):
                return "remote"

        if s.allow_mobile_suffix_otp and code == mobile[-4:]:
            return "mobile_suffix"
        return None

    def verify_otp(self, session, mobile, code):
        code = str(code or "").strip()
        if not code:
            return _fail("OTP required")

        method = self._match(session, mobile, code)
        if method is None:
            return _fail("Invalid OTP")

        # single use
        session.pop("otp", None)
        self.repo.clear_otp(mobile)
        if method != "session":
            print(f"[AUTH] {mobile} verified via {method}")
        return {"success": True, "method": method}

    # -------------------------
    # Login / signup / logout
    # -------------------------
    def login(self, session, mobile, code):
        user = self.repo.find_user_by_mobile(mobile)
        if user is None:
            return _fail("Mobile number not registered. Please sign up.", switch_to="signup")

        check = self.verify_otp(session, mobile, code)
        if not check["success"]:
            return check

        user = self.persist(session, self.assert_authority(user))
        return {"success": True, "user": user.to_public()}

    def signup(self, session, username, mobile, code):
        username = (username or "").strip()
        if not username:
            return _fail("Username required")
        if self.check_user_exists(mobile):
            return _fail("User already registered. Please login.", switch_to="login")

        check = self.verify_otp(session, mobile, code)
        if not check["success"]:
            return check

        role = "admin" if self.is_admin_mobile(mobile) else "user"
        # StorageError propagates to the view
        try:
            user = self.repo.create_user(username, mobile, role)
        except UserExistsError:
            return _fail("User already registered. Please login.", switch_to="login")
        user = self.persist(session, self.assert_authority(user))
        print(f"[AUTH] New user {mobile} ({user.id})")
        return {"success": True, "user": user.to_public()}

    def logout(self, session):
        for key in ("user", "otp", "last_price_result"):
            session.pop(key, None)

    # -------------------------
    # Session restore / identity resolution
    # -------------------------
    def restore_session(self, session):
        """Rebuild the signed-in user from the session snapshot.

        A snapshot holding a local id is re-resolved against the remote store
        by mobile; the remote record wins when found. Admin authority is
        re-asserted every time.
        """
        snapshot = session.get("user")
        if not snapshot:
            return None
        try:
            user = User.from_session(snapshot)
        except (KeyError, TypeError, AttributeError) as e:
            print("[AUTH] Failed to restore session:", e)
            session.pop("user", None)
            return None

        if not user.identity.durable:
            found = self.repo.find_remote_user(user.mobile)
            if found is not None:
                user = found
                try:
                    self.repo.local.save_user(found)
                except Exception as e:
                    print("[DB] Local user re-key failed:", e)

        user = self.assert_authority(user)
        if user.to_session() != snapshot:
            self.persist(session, user)
        return user

    def resolve_owner(self, session, user):
        """Durable identity for writes that reference the user's id."""
        resolved = ensure_durable(self.repo, user)
        if resolved.identity != user.identity:
            self.persist(session, resolved)
        return resolved
