import json

from agrifair.storage import FEATURED_FARMERS, USERS
from tests.test_pricing import FORM, GOOD

MOBILE = "9876543210"


def signup(client, mobile=MOBILE, username="Ravi"):
    r = client.post("/auth/request_otp", json={"mobile": mobile, "mode": "signup", "username": username})
    assert r.status_code == 200
    code = r.get_json()["demo_otp"]
    return client.post("/auth/signup", json={"username": username, "mobile": mobile, "otp": code})


def test_ping(client):
    assert client.get("/ping").get_json()["ok"] is True


def test_request_otp_validates_mobile(client):
    r = client.post("/auth/request_otp", json={"mobile": "12345", "mode": "login"})
    assert r.status_code == 400


def test_request_otp_signup_needs_username(client):
    r = client.post("/auth/request_otp", json={"mobile": MOBILE, "mode": "signup"})
    assert r.status_code == 400


def test_login_unknown_mobile_is_business_error(client):
    r = client.post("/auth/request_otp", json={"mobile": MOBILE, "mode": "login"})
    assert r.status_code == 409
    assert r.get_json()["switch_to"] == "signup"

    r = client.post("/auth/login", json={"mobile": MOBILE, "otp": "1234"})
    assert r.status_code == 401
    assert client.get("/api/user").get_json()["logged"] is False


def test_signup_login_logout(client):
    r = signup(client)
    assert r.status_code == 200
    assert client.get("/api/user").get_json()["user"]["mobile"] == MOBILE

    client.post("/auth/logout")
    assert client.get("/api/user").get_json()["logged"] is False

    r = client.post("/auth/login", json={"mobile": MOBILE, "otp": "1234"})
    assert r.status_code == 200
    assert r.get_json()["user"]["mobile"] == MOBILE


def test_signup_twice_is_rejected(client):
    signup(client)
    client.post("/auth/logout")
    r = client.post("/auth/signup", json={"username": "Other", "mobile": MOBILE, "otp": "1234"})
    assert r.status_code == 409


def test_check_endpoint(client):
    assert client.post("/auth/check", json={"mobile": MOBILE}).get_json()["exists"] is False
    signup(client)
    assert client.post("/auth/check", json={"mobile": MOBILE}).get_json()["exists"] is True


def test_invalid_otp(client):
    client.post("/auth/request_otp", json={"mobile": MOBILE, "mode": "signup", "username": "Ravi"})
    r = client.post("/auth/signup", json={"username": "Ravi", "mobile": MOBILE, "otp": "000000"})
    assert r.status_code == 401
    assert r.get_json()["message"] == "Invalid OTP"


def test_protected_routes_need_login(client):
    assert client.get("/api/complaints").status_code == 401
    assert client.post("/api/calculate", json=FORM).status_code == 401
    assert client.post("/api/spotlight", json={"name": "x", "bio": "y"}).status_code == 401


def test_complaints_flow(client):
    signup(client)
    r = client.post("/api/complaints", json={"traderName": "Mandi Traders", "issue": "Short weight"})
    assert r.status_code == 201
    saved = r.get_json()["complaint"]
    assert saved["status"] == "Pending"

    listed = client.get("/api/complaints").get_json()["complaints"]
    assert [c["traderName"] for c in listed] == ["Mandi Traders"]


def test_complaint_requires_fields(client):
    signup(client)
    assert client.post("/api/complaints", json={"traderName": "X"}).status_code == 400


def test_calculate_keeps_previous_result_on_failure(client, fake_model):
    signup(client)
    fake_model.text = json.dumps(GOOD)
    r = client.post("/api/calculate", json={"input": FORM, "language": "hi"})
    assert r.status_code == 200
    first = r.get_json()["result"]
    assert "Total Cultivation Cost: 2600" in fake_model.prompts[-1]

    fake_model.text = "{broken"
    r = client.post("/api/calculate", json={"input": FORM, "language": "en"})
    assert r.status_code == 502
    assert r.get_json()["previous"] == first
    assert client.get("/api/calculate/last").get_json()["result"] == first


def test_calculate_validates_input(client):
    signup(client)
    assert client.post("/api/calculate", json=dict(FORM, cropName="")).status_code == 400
    assert client.post("/api/calculate", json={"input": FORM, "language": "fr"}).status_code == 400


def test_status(client):
    body = client.get("/api/status").get_json()
    assert body["isCloud"] is False
    assert body["pricingConfigured"] is True


def test_admin_can_delete_any_spotlight(client):
    signup(client)
    client.post("/api/spotlight", json={"name": "Ravi", "bio": "Millet grower"})
    farmer_id = client.get("/api/spotlight").get_json()["farmers"][0]["userId"]
    client.post("/auth/logout")

    other = client.application.test_client()
    signup(other, "9123456789", "Someone")
    assert other.delete(f"/api/spotlight/{farmer_id}").status_code == 403

    admin = client.application.test_client()
    signup(admin, "0000000000", "Admin")
    r = admin.delete(f"/api/spotlight/{farmer_id}")
    assert r.get_json()["removed"] is True
    assert client.get("/api/spotlight").get_json()["farmers"] == []


def test_spotlight_limit(client):
    for i, mobile in enumerate(["9000000001", "9000000002", "9000000003"]):
        c = client.application.test_client()
        signup(c, mobile, f"Farmer {i}")
        c.post("/api/spotlight", json={"name": f"Farmer {i}", "bio": "bio"})
    assert len(client.get("/api/spotlight?limit=2").get_json()["farmers"]) == 2
    assert len(client.get("/api/spotlight").get_json()["farmers"]) == 3


# -------------------------
# With the remote store
# -------------------------
def test_spotlight_offline_user_resolves_to_durable_id(cloud_client, cloud_repo, mongo_db):
    # account created while only the local files knew about it
    local_user = cloud_repo.local.create_user("Ravi", MOBILE)
    r = cloud_client.post("/auth/login", json={"mobile": MOBILE, "otp": "1234"})
    assert r.get_json()["user"]["id"] == local_user.id

    cloud_client.post("/api/spotlight", json={"name": "Ravi", "bio": "Millet grower"})
    cloud_client.post("/api/spotlight", json={"name": "Ravi K", "bio": "Millet and ragi"})

    remote_user = mongo_db[USERS].find_one({"mobile": MOBILE})
    durable_id = str(remote_user["_id"])
    rows = list(mongo_db[FEATURED_FARMERS].find({}))
    assert len(rows) == 1
    assert rows[0]["user_id"] == durable_id
    assert rows[0]["name"] == "Ravi K"
    assert [f["userId"] for f in cloud_repo.local.list_featured_farmers()] == [durable_id]
    assert cloud_client.get("/api/user").get_json()["user"]["id"] == durable_id


def test_spotlight_delete_removes_everywhere(cloud_client, cloud_repo, mongo_db):
    signup(cloud_client)
    cloud_client.post("/api/spotlight", json={"name": "Ravi", "bio": "Millet grower"})
    user_id = cloud_client.get("/api/user").get_json()["user"]["id"]

    r = cloud_client.delete(f"/api/spotlight/{user_id}")
    assert r.get_json()["removed"] is True
    assert mongo_db[FEATURED_FARMERS].count_documents({}) == 0
    assert cloud_repo.local.list_featured_farmers() == []
    assert cloud_client.get("/api/spotlight").get_json()["farmers"] == []


def test_cloud_signup_gets_durable_id(cloud_client, mongo_db):
    r = signup(cloud_client)
    user = r.get_json()["user"]
    assert mongo_db[USERS].count_documents({"mobile": MOBILE}) == 1
    assert str(mongo_db[USERS].find_one({"mobile": MOBILE})["_id"]) == user["id"]


def test_storage_failure_is_reported(client, local_only_repo, monkeypatch):
    from agrifair.storage import StorageError

    def refuse(collection, records):
        raise StorageError("disk full")

    monkeypatch.setattr(local_only_repo.local.store, "write", refuse)
    r = client.post("/auth/signup", json={"username": "Ravi", "mobile": MOBILE, "otp": "1234"})
    assert r.status_code == 500
    assert "try again" in r.get_json()["message"]
