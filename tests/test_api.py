import threading
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kyc_backend.db import Base, get_db
from kyc_backend.deps import get_security_analyzer, get_session_store
from kyc_backend.main import app
from kyc_backend.models import AuditLog, KycSubmission
from kyc_backend.services import kyc_service
from kyc_backend.services.security_analysis import RealLocation, RiskReport
from kyc_backend.services.users import create_user
from kyc_backend.session_store import InMemorySessionStore

PNG = b"\x89PNG\r\n\x1a\nfake-image"

GG_CLUB_DDL = """
CREATE TABLE `GG Club` (
  ID TEXT, Name TEXT, Region_ID TEXT, Region_Name TEXT, Union_ID TEXT, Union_Name TEXT,
  Fee REAL, fee_type TEXT, Eco REAL, eco_type TEXT, eco_earnings_type TEXT, BBJ REAL,
  ECode_flag TEXT, MTT_Fee REAL, MTT_Eco REAL, net_settlement_type TEXT
)
"""


class StubAnalyzer:
    def __init__(self):
        self.inputs = []
        self.threads = []

    async def analyze(self, data):
        self.inputs.append(data)
        self.threads.append(threading.get_ident())
        return RiskReport(
            vpn_detected=False,
            location_mismatch=True,
            real_location=RealLocation(country="Canada", city="Toronto"),
            fraud_score=60,
            fraud_risk="medium",
            confidence="high",
        )


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)

        with self.engine.begin() as conn:
            conn.execute(text(GG_CLUB_DDL))
            conn.execute(
                text(
                    "INSERT INTO `GG Club` (ID, Name, Region_ID, Region_Name, Union_ID) VALUES "
                    "('C1', 'Aces High', 'R1', 'North', 'U1'), ('C2', 'River Kings', 'R2', 'South', 'U1')"
                )
            )

        db = self.Session()
        try:
            create_user(db, "admin", "admin-pass", "admin")
            create_user(db, "owner", "owner-pass", "club_owner", club_id="C1")
            create_user(db, "agent", "agent-pass", "agent")
        finally:
            db.close()

        self.store = InMemorySessionStore()
        self.analyzer = StubAnalyzer()

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_session_store] = lambda: self.store
        app.dependency_overrides[get_security_analyzer] = lambda: self.analyzer
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.engine.dispose()

    def login(self, username, password):
        r = self.client.post("/api/auth/login", json={"username": username, "password": password})
        self.assertEqual(r.status_code, 200, r.text)
        return {"Authorization": f"Bearer {r.json()['token']}"}

    def submit(self, **extra):
        data = {
            "fullName": "Jane Doe",
            "email": "jane@example.com",
            "country": "USA",
            "playerId": "p-1",
            "geolocationData": '{"city": "Toronto", "country": "Canada"}',
            "deviceSpecs": '{"deviceId": "dev-1", "platform": "MacIntel", "fonts": ["Arial"]}',
        }
        data.update(extra)
        return self.client.post(
            "/api/kyc/submit",
            data=data,
            files={"driverLicense": ("license.png", PNG, "image/png")},
            headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
        )


class TestServiceEndpoints(ApiTestCase):
    def test_health(self):
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["status"], "OK")
        self.assertIn("timestamp", r.json())

    def test_root(self):
        self.assertEqual(self.client.get("/").json()["status"], "ok")


class TestAuth(ApiTestCase):
    def test_login_verify_logout(self):
        headers = self.login("owner", "owner-pass")
        self.assertEqual(len(self.store), 1)

        r = self.client.get("/api/auth/verify", headers=headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["user"]["club_id"], "C1")

        self.assertEqual(self.client.post("/api/auth/logout", headers=headers).status_code, 200)
        self.assertEqual(len(self.store), 0)
        self.assertEqual(self.client.get("/api/auth/verify", headers=headers).status_code, 401)
        # logout repetido
        self.assertEqual(self.client.post("/api/auth/logout", headers=headers).status_code, 200)

    def test_invalid_credentials(self):
        r = self.client.post("/api/auth/login", json={"username": "owner", "password": "nope"})
        self.assertEqual(r.status_code, 401)
        r = self.client.post("/api/auth/login", json={"username": "ghost", "password": "x"})
        self.assertEqual(r.status_code, 401)

    def test_missing_fields(self):
        self.assertEqual(self.client.post("/api/auth/login", json={"username": "owner"}).status_code, 422)

    def test_no_token_and_bad_token(self):
        self.assertEqual(self.client.get("/api/auth/verify").status_code, 401)
        r = self.client.get("/api/auth/verify", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(r.status_code, 401)

    def test_expired_session_rejected(self):
        headers = self.login("owner", "owner-pass")
        for rec in list(self.store._sessions.values()):
            rec.expires_at = rec.created_at
        self.assertEqual(self.client.get("/api/auth/verify", headers=headers).status_code, 401)


class TestKyc(ApiTestCase):
    def test_submit_and_status(self):
        r = self.submit()
        self.assertEqual(r.status_code, 201, r.text)
        body = r.json()
        self.assertTrue(body["success"])
        submission_id = body["submissionId"]

        risk_input = self.analyzer.inputs[0]
        self.assertEqual(risk_input.ip_address, "203.0.113.7")
        self.assertEqual(risk_input.country, "USA")
        self.assertEqual(risk_input.geolocation.country, "Canada")

        r = self.client.get(f"/api/kyc/status/{submission_id}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["status"], "pending")
        self.assertEqual(r.json()["full_name"], "Jane Doe")

        db = self.Session()
        try:
            sub = db.query(KycSubmission).one()
            self.assertEqual(sub.risk_report["fraud_risk"], "medium")
            self.assertEqual(sub.device.device_id, "dev-1")
            self.assertTrue(sub.driver_license_file_path.endswith(".png"))
            self.assertEqual(db.query(AuditLog).filter(AuditLog.action == "KYC_SUBMITTED").count(), 1)
        finally:
            db.close()

    def test_submit_runs_file_and_db_work_off_the_event_loop(self):
        threads = {}

        def recorded(name, fn):
            def wrapper(*args, **kwargs):
                threads.setdefault(name, []).append(threading.get_ident())
                return fn(*args, **kwargs)

            return wrapper

        with mock.patch.object(
            kyc_service, "save_upload", recorded("save_upload", kyc_service.save_upload)
        ), mock.patch.object(
            kyc_service, "store_submission", recorded("store_submission", kyc_service.store_submission)
        ):
            r = self.submit()

        self.assertEqual(r.status_code, 201, r.text)
        loop_thread = self.analyzer.threads[0]
        self.assertEqual(len(threads["save_upload"]), 2)
        self.assertEqual(len(threads["store_submission"]), 1)
        for name, idents in threads.items():
            with self.subTest(name=name):
                self.assertNotIn(loop_thread, idents)

    def test_submit_storage_failure_returns_500_and_discards_files(self):
        saved = []
        original_save = kyc_service.save_upload

        def save_upload(upload, field):
            path = original_save(upload, field)
            saved.append(path)
            return path

        with mock.patch.object(kyc_service, "save_upload", save_upload), mock.patch.object(
            kyc_service, "store_submission", side_effect=RuntimeError("db down")
        ):
            r = self.submit()

        self.assertEqual(r.status_code, 500)
        self.assertEqual(r.json()["detail"], "Failed to submit KYC verification")
        self.assertTrue(saved[0])
        self.assertFalse(Path(saved[0]).exists())

    def test_audit_failure_keeps_stored_submission(self):
        with mock.patch.object(kyc_service, "log", side_effect=RuntimeError("audit down")):
            r = self.submit()

        self.assertEqual(r.status_code, 201, r.text)
        db = self.Session()
        try:
            sub = db.query(KycSubmission).one()
            self.assertEqual(sub.submission_id, r.json()["submissionId"])
            self.assertTrue(Path(sub.driver_license_file_path).exists())
        finally:
            db.close()

    def test_unknown_status(self):
        self.assertEqual(self.client.get("/api/kyc/status/nope").status_code, 404)

    def test_malformed_json_fields_are_ignored(self):
        r = self.submit(geolocationData="{not json", deviceSpecs="[1, 2]")
        self.assertEqual(r.status_code, 201, r.text)
        self.assertIsNone(self.analyzer.inputs[0].geolocation)

    def test_full_name_required(self):
        r = self.client.post("/api/kyc/submit", data={"email": "x@example.com"})
        self.assertEqual(r.status_code, 422)

    def test_rejects_non_media_upload(self):
        r = self.client.post(
            "/api/kyc/submit",
            data={"fullName": "Jane"},
            files={"driverLicense": ("notes.txt", b"hello", "text/plain")},
        )
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["detail"], "Only image and video files are allowed!")

    def test_admin_review_flow(self):
        submission_id = self.submit().json()["submissionId"]
        admin = self.login("admin", "admin-pass")

        r = self.client.get("/api/kyc/submissions", headers=admin)
        self.assertEqual(r.status_code, 200)
        listing = r.json()
        self.assertEqual(listing["pagination"], {"total": 1, "page": 1, "limit": 20, "totalPages": 1})
        kyc_id = listing["data"][0]["id"]

        r = self.client.get(f"/api/kyc/submission/{kyc_id}", headers=admin)
        self.assertEqual(r.status_code, 200)
        detail = r.json()["data"]
        self.assertTrue(detail["has_driver_license"])
        self.assertFalse(detail["has_verification_video"])
        self.assertEqual(detail["risk_report"]["real_location"]["country"], "Canada")
        self.assertEqual(detail["device"]["platform"], "MacIntel")

        r = self.client.put(
            f"/api/kyc/submission/{kyc_id}/status",
            json={"status": "approved", "verificationNotes": "documents ok"},
            headers=admin,
        )
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["data"]["status"], "approved")
        self.assertEqual(r.json()["data"]["verified_by"], "admin")

        status = self.client.get(f"/api/kyc/status/{submission_id}").json()
        self.assertEqual(status["verification_notes"], "documents ok")

        r = self.client.get("/api/kyc/submissions?status=pending", headers=admin)
        self.assertEqual(r.json()["pagination"]["total"], 0)

    def test_status_update_validation(self):
        self.submit()
        admin = self.login("admin", "admin-pass")
        kyc_id = self.client.get("/api/kyc/submissions", headers=admin).json()["data"][0]["id"]

        r = self.client.put(f"/api/kyc/submission/{kyc_id}/status", json={"status": "done"}, headers=admin)
        self.assertEqual(r.status_code, 400)
        r = self.client.put("/api/kyc/submission/9999/status", json={"status": "approved"}, headers=admin)
        self.assertEqual(r.status_code, 404)

    def test_admin_endpoints_require_admin(self):
        self.assertEqual(self.client.get("/api/kyc/submissions").status_code, 401)
        owner = self.login("owner", "owner-pass")
        r = self.client.get("/api/kyc/submissions", headers=owner)
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.json()["detail"], "Access denied. Admin role required.")

    def test_file_download(self):
        submission_id = self.submit().json()["submissionId"]
        admin = self.login("admin", "admin-pass")

        r = self.client.get(f"/api/kyc/file/{submission_id}/license", headers=admin)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.content, PNG)

        self.assertEqual(self.client.get(f"/api/kyc/file/{submission_id}/video", headers=admin).status_code, 404)
        self.assertEqual(self.client.get(f"/api/kyc/file/{submission_id}/selfie", headers=admin).status_code, 400)
        self.assertEqual(self.client.get("/api/kyc/file/nope/license", headers=admin).status_code, 404)


class TestReports(ApiTestCase):
    def test_admin_sees_all_clubs(self):
        admin = self.login("admin", "admin-pass")
        r = self.client.get("/api/reports/clubs", headers=admin)
        self.assertEqual(r.status_code, 200, r.text)
        body = r.json()
        self.assertEqual(body["pagination"]["total"], 2)
        self.assertEqual(body["filter"], "Admin access - showing all data")

    def test_club_owner_is_scoped(self):
        owner = self.login("owner", "owner-pass")
        body = self.client.get("/api/reports/clubs?sortBy=Name&sortOrder=desc", headers=owner).json()
        self.assertEqual([row["ID"] for row in body["data"]], ["C1"])
        self.assertEqual(body["pagination"]["total"], 1)

    def test_search_and_pagination(self):
        admin = self.login("admin", "admin-pass")
        body = self.client.get("/api/reports/clubs?search=River&page=1&limit=5", headers=admin).json()
        self.assertEqual([row["Name"] for row in body["data"]], ["River Kings"])
        self.assertEqual(body["pagination"], {"total": 1, "page": 1, "limit": 5})

    def test_unscoped_agent_gets_nothing_without_querying(self):
        # `GG Member` não existe nesta BD: a query não pode ser executada
        agent = self.login("agent", "agent-pass")
        r = self.client.get("/api/reports/members", headers=agent)
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["data"], [])
        self.assertEqual(r.json()["filter"], "No club access")

    def test_invalid_options_rejected(self):
        admin = self.login("admin", "admin-pass")
        for qs in ["sortBy=Password", "limit=500", "page=0", "page=abc", "sortOrder=UP"]:
            with self.subTest(qs=qs):
                self.assertEqual(self.client.get(f"/api/reports/clubs?{qs}", headers=admin).status_code, 400)

    def test_requires_auth(self):
        self.assertEqual(self.client.get("/api/reports/clubs").status_code, 401)


if __name__ == "__main__":
    unittest.main()
