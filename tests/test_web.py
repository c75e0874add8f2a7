import io
import sys
import unittest

from test_utils import ROOT_DIR, HELLO_ACCENT

sys.path.insert(0, str(ROOT_DIR / "web"))

from app import app as flask_app  # noqa: E402

TEXT = HELLO_ACCENT.decode("utf-8")


class TestWebApp(unittest.TestCase):

    def setUp(self):
        flask_app.config["TESTING"] = True
        self.client = flask_app.test_client()

    def test_index_lists_commands(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["commands"], ["search", "delete", "replace", "count"])

    def test_filter_delete(self):
        response = self.client.post("/filter", data={"command": "delete", "text_input": TEXT})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["output"], "hllo\n")

    def test_filter_count_verbose(self):
        response = self.client.post(
            "/filter",
            data={"command": "count", "count_mode": "both", "verbose": "1", "text_input": TEXT},
        )
        body = response.get_json()
        self.assertEqual(body["output"], "UTF-8 Characters: 1\nUTF-8 Bytes: 2\n")
        self.assertEqual(body["stats"]["characters"], 1)
        self.assertEqual(body["stats"]["bytes"], 2)

    def test_filter_search_default(self):
        response = self.client.post("/filter", data={"text_input": TEXT})
        self.assertEqual(response.get_json()["output"], "Line 1, 1 occurence(s):\n" + TEXT + " ^   \n")

    def test_file_upload(self):
        response = self.client.post(
            "/filter",
            data={"command": "replace", "replacement": "?", "file_input": (io.BytesIO(HELLO_ACCENT), "in.txt")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["output"], "h?llo\n")

    def test_rejected_file_type(self):
        response = self.client.post(
            "/filter",
            data={"command": "delete", "file_input": (io.BytesIO(HELLO_ACCENT), "tool.exe")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("Invalid file type", response.get_json()["message"])

    def test_invalid_replacement(self):
        response = self.client.post(
            "/filter", data={"command": "replace", "replacement": "ab", "text_input": TEXT}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "Invalid Configuration")

    def test_missing_input(self):
        response = self.client.post("/filter", data={"command": "delete"})
        self.assertEqual(response.status_code, 400)

    def test_download_raw_bytes(self):
        response = self.client.post(
            "/download", data={"command": "replace", "replacement": "?", "text_input": TEXT}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, b"h?llo\n")
        self.assertIn("attachment", response.headers["Content-Disposition"])
        self.assertIn("replace_pasted_text.txt", response.headers["Content-Disposition"])

    def test_security_headers(self):
        response = self.client.get("/")
        self.assertEqual(response.headers["X-Frame-Options"], "DENY")
        self.assertEqual(response.headers["X-Content-Type-Options"], "nosniff")
        self.assertIn("default-src 'self'", response.headers["Content-Security-Policy"])

    def test_method_not_allowed_is_json(self):
        response = self.client.get("/filter")
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.get_json()["code"], 405)


if __name__ == "__main__":
    unittest.main()
