import sys
import unittest
from pathlib import Path

import httpx


APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from scripts import backend_probe


class BackendProbeTests(unittest.TestCase):
    def test_without_token_only_public_endpoints_are_checked(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"equipmentList": [{"id": 1}, {"id": 2}]})

        results = backend_probe.run_checks("http://backend.test/", None, 5, transport=httpx.MockTransport(handler))

        self.assertEqual(paths, ["/api/equipment"])
        self.assertTrue(results[0].ok)
        self.assertIn("2 rows under 'equipmentList'", results[0].detail)

    def test_failures_are_reported_per_check(self):
        def handler(request):
            if request.url.path == "/api/auth/me":
                return httpx.Response(401)
            if request.url.path == "/api/borrow/logs":
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=[])

        results = backend_probe.run_checks("http://backend.test", "t1", 5, transport=httpx.MockTransport(handler))
        by_name = {row.name: row for row in results}

        self.assertEqual(len(results), 5)
        self.assertEqual(by_name["current user"].detail, "status=401")
        self.assertFalse(by_name["audit logs"].ok)
        self.assertTrue(by_name["audit logs"].detail.startswith("unreachable"))
        self.assertEqual(by_name["pending requests"].detail, "status=200 0 rows")


if __name__ == "__main__":
    unittest.main()
