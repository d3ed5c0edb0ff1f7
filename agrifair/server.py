import time
from datetime import datetime
from functools import wraps

from flask import Flask, request, jsonify, session, g
from flask_cors import CORS

from agrifair.auth import AuthService, normalize_mobile, MODES
from agrifair.config import Settings
from agrifair.pricing import CropInput, PricingClient, PricingError, LANGUAGES
from agrifair.repositories import FallbackRepository, LocalRepository, MongoRepository
from agrifair.storage import LocalStore, StorageError, connect_mongo


def build_repository(settings, db=None):
    local = LocalRepository(LocalStore(settings.data_dir))
    if db is None:
        db = connect_mongo(settings)
    remote = MongoRepository(db) if db is not None else None
    return FallbackRepository(local, remote)


def create_app(settings=None, repo=None, pricing=None, auth=None):
    settings = settings or Settings.from_env()
    repo = repo or build_repository(settings)
    pricing = pricing or PricingClient(settings.gemini_api_key, settings.gemini_model)
    auth = auth or AuthService(settings, repo)

    # -----------------------------------------------------
    #   FLASK CONFIG
    # -----------------------------------------------------
    app = Flask(__name__)
    # Allow cross-origin requests with credentials (session cookies)
    CORS(app, supports_credentials=True)
    app.secret_key = settings.secret_key
    app.config["AGRIFAIR_SETTINGS"] = settings
    app.extensions["agrifair"] = {"repo": repo, "auth": auth, "pricing": pricing}

    if not pricing.configured:
        print("[AI] GEMINI_API_KEY not set; fair price calculator disabled.")

    def read_json():
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}

    def bad_request(message):
        return jsonify({"success": False, "message": message}), 400

    def login_required(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if g.user is None:
                return jsonify({"success": False, "message": "Authentication required"}), 401
            return f(*args, **kwargs)
        return decorated

    @app.before_request
    def _restore_session():
        g.user = auth.restore_session(session)

    @app.errorhandler(StorageError)
    def _storage_error(e):
        print("[DB] write failed:", e)
        return jsonify({
            "success": False,
            "message": "Could not save right now. Please check your connection and try again.",
        }), 500

    # -----------------------------------------------------
    #   AUTH
    # -----------------------------------------------------
    @app.route("/auth/check", methods=["POST"])
    def auth_check():
        data = read_json()
        mobile = normalize_mobile(data.get("mobile"))
        if not mobile:
            return bad_request("Mobile number must be exactly 10 digits.")
        return jsonify({"success": True, "exists": auth.check_user_exists(mobile)})

    @app.route("/auth/request_otp", methods=["POST"])
    def request_otp():
        data = read_json()
        mobile = normalize_mobile(data.get("mobile"))
        if not mobile:
            return bad_request("Mobile number must be exactly 10 digits.")
        mode = data.get("mode") or "login"
        if mode not in MODES:
            return bad_request("mode must be 'login' or 'signup'")
        if mode == "signup" and not (data.get("username") or "").strip():
            return bad_request("Username required")

        result = auth.request_otp(session, mobile, mode)
        return jsonify(result), (200 if result["success"] else 409)

    @app.route("/auth/login", methods=["POST"])
    def login():
        data = read_json()
        mobile = normalize_mobile(data.get("mobile"))
        if not mobile:
            return bad_request("Mobile number must be exactly 10 digits.")
        result = auth.login(session, mobile, data.get("otp"))
        return jsonify(result), (200 if result["success"] else 401)

    @app.route("/auth/signup", methods=["POST"])
    def signup():
        data = read_json()
        mobile = normalize_mobile(data.get("mobile"))
        if not mobile:
            return bad_request("Mobile number must be exactly 10 digits.")
        if not (data.get("username") or "").strip():
            return bad_request("Username required")
        result = auth.signup(session, data.get("username"), mobile, data.get("otp"))
        if result["success"]:
            return jsonify(result)
        return jsonify(result), (409 if result.get("switch_to") else 401)

    @app.route("/auth/logout", methods=["POST"])
    def logout():
        auth.logout(session)
        return jsonify({"success": True})

    @app.route("/api/user")
    def api_user():
        """Return basic user info for the current session."""
        if g.user is None:
            return jsonify({"logged": False, "user": None, "is_admin": False})
        return jsonify({"logged": True, "user": g.user.to_public(), "is_admin": g.user.is_admin})

    # -----------------------------------------------------
    #   FAIR PRICE CALCULATOR
    # -----------------------------------------------------
    @app.route("/api/calculate", methods=["POST"])
    @login_required
    def calculate():
        data = read_json()
        language = data.get("language") or "en"
        if language not in LANGUAGES:
            return bad_request(f"language must be one of {', '.join(LANGUAGES)}")
        try:
            crop = CropInput.from_dict(data.get("input") or data)
        except ValueError as e:
            return bad_request(str(e))

        try:
            result = pricing.calculate_fair_price(crop, language)
        except PricingError as e:
            # the last good result stays as it was
            return jsonify({
                "success": False,
                "message": e.message,
                "previous": session.get("last_price_result"),
            }), e.status

        session["last_price_result"] = result
        return jsonify({"success": True, "result": result})

    @app.route("/api/calculate/last")
    @login_required
    def last_calculation():
        return jsonify({"success": True, "result": session.get("last_price_result")})

    # -----------------------------------------------------
    #   TRADER COMPLAINTS
    # -----------------------------------------------------
    @app.route("/api/complaints", methods=["GET", "POST"])
    @login_required
    def complaints():
        if request.method == "GET":
            return jsonify({"success": True, "complaints": repo.list_complaints(g.user.id)})

        data = read_json()
        trader = (data.get("traderName") or "").strip()
        issue = (data.get("issue") or "").strip()
        if not trader or not issue:
            return bad_request("traderName and issue required")

        owner = auth.resolve_owner(session, g.user)
        complaint = {
            "id": str(int(time.time() * 1000)),
            "userId": owner.id,
            "traderName": trader,
            "issue": issue,
            "date": datetime.now().date().isoformat(),
            "status": "Pending",
        }
        saved = repo.create_complaint(complaint)
        return jsonify({"success": True, "complaint": saved}), 201

    # -----------------------------------------------------
    #   FARMER SPOTLIGHT
    # -----------------------------------------------------
    @app.route("/api/spotlight", methods=["GET", "POST"])
    def spotlight():
        if request.method == "GET":
            farmers = repo.list_featured_farmers()
            limit = request.args.get("limit", type=int)
            if limit and limit > 0:
                farmers = farmers[:limit]
            return jsonify({"success": True, "farmers": farmers})

        if g.user is None:
            return jsonify({"success": False, "message": "Authentication required"}), 401
        data = read_json()
        name = (data.get("name") or g.user.username or "").strip()
        bio = (data.get("bio") or "").strip()
        photo = data.get("photo") or ""
        if not name or not bio:
            return bad_request("name and bio required")
        if not isinstance(photo, str) or len(photo) > settings.max_photo_chars:
            return bad_request("photo is too large")

        owner = auth.resolve_owner(session, g.user)
        farmer = {
            "userId": owner.id,
            "name": name,
            "bio": bio,
            "photo": photo,
            "date": datetime.now().isoformat(timespec="seconds"),
        }
        saved = repo.upsert_featured_farmer(farmer)
        return jsonify({"success": True, "farmer": saved})

    @app.route("/api/spotlight/<user_id>", methods=["DELETE"])
    @login_required
    def delete_spotlight(user_id):
        if not g.user.is_admin and user_id != g.user.id:
            return jsonify({"success": False, "message": "Not authorized"}), 403
        removed = repo.delete_featured_farmer(user_id)
        return jsonify({"success": True, "removed": removed})

    # -----------------------------------------------------
    #   STATUS
    # -----------------------------------------------------
    @app.route("/api/status")
    def status():
        out = repo.status()
        out["pricingConfigured"] = pricing.configured
        out["smsConfigured"] = settings.sms_configured
        return jsonify(out)

    @app.route("/ping")
    def ping():
        return jsonify({"ok": True, "time": time.time()})

    return app
