import sys
import unittest
from pathlib import Path

import jwt


APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from schemas.records import CurrentUser
from services.session_service import (
    SESSION_KEY,
    clear_session,
    decode_token_claims,
    load_session,
    normalize_role,
    open_session,
    refresh_session,
    session_from_token,
)


SIGNING_KEY = "backend-signing-key-for-tests-only-0123456789"


def _token(**claims):
    return jwt.encode(claims, SIGNING_KEY, algorithm="HS256")


class RoleResolutionTests(unittest.TestCase):
    def test_role_from_login_response_wins(self):
        session = session_from_token(_token(role="Student"), role="admin")
        self.assertEqual(session.role, "Admin")
        self.assertEqual(session.home_path, "/admin")

    def test_role_falls_back_to_token_claim(self):
        token = _token(**{"http://schemas.microsoft.com/ws/2008/06/identity/claims/role": "Admin", "email": "k@ashesi.edu.gh"})
        session = session_from_token(token)
        self.assertTrue(session.is_admin)
        self.assertEqual(session.email, "k@ashesi.edu.gh")

    def test_missing_role_defaults_to_student(self):
        session = session_from_token(_token(sub="12"))
        self.assertEqual(session.role, "Student")
        self.assertEqual(session.home_path, "/dashboard")
        self.assertEqual(session.user_id, "12")

    def test_unknown_role_is_treated_as_student(self):
        self.assertEqual(normalize_role("Technician"), "Student")
        self.assertEqual(normalize_role(["ADMIN"]), "Admin")
        self.assertEqual(normalize_role(None), "Student")

    def test_opaque_token_has_no_claims(self):
        self.assertEqual(decode_token_claims("not-a-jwt"), {})
        self.assertEqual(decode_token_claims(None), {})


class SessionStoreTests(unittest.TestCase):
    def test_open_load_and_clear(self):
        store = {}
        user = CurrentUser.model_validate({"UserID": 7, "Name": "Ama Mensah", "Email": "ama@ashesi.edu.gh"})

        opened = open_session(store, _token(role="Student"), user=user)
        loaded = load_session(store)

        self.assertEqual(loaded, opened)
        self.assertEqual(loaded.user_id, "7")
        self.assertEqual(loaded.display_name, "Ama Mensah")

        clear_session(store)
        self.assertIsNone(load_session(store))

    def test_corrupt_session_payload_is_dropped(self):
        store = {SESSION_KEY: {"token": "abc", "unexpected": True}}
        self.assertIsNone(load_session(store))
        self.assertNotIn(SESSION_KEY, store)

    def test_refresh_keeps_token_and_updates_profile(self):
        store = {}
        session = open_session(store, _token(role="Student", email="old@ashesi.edu.gh"))
        refreshed = refresh_session(
            store,
            session,
            CurrentUser.model_validate({"id": "u-1", "name": "Kofi", "email": "kofi@ashesi.edu.gh"}),
        )

        self.assertEqual(refreshed.token, session.token)
        self.assertEqual(refreshed.role, "Student")
        self.assertEqual(load_session(store).email, "kofi@ashesi.edu.gh")

    def test_display_name_falls_back_to_email(self):
        session = session_from_token(_token(email="kwame.asante@ashesi.edu.gh"))
        self.assertEqual(session.display_name, "kwame asante")


if __name__ == "__main__":
    unittest.main()
