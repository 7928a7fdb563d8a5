from __future__ import annotations

import unittest

from flask import Flask

from agromarket.utils.observability import _before_send_scrub, init_sentry


class SentryOptionalInitTestCase(unittest.TestCase):
    def test_sentry_init_is_noop_without_dsn(self):
        app = Flask(__name__)
        app.config["SENTRY_DSN"] = ""
        init_sentry(app)

    def test_scrub_redacts_auth_and_callback_body(self):
        event = {
            "request": {
                "url": "https://api.example.test/api/payments/mpesa/callback",
                "headers": {"Authorization": "Bearer abc", "Accept": "application/json"},
                "data": {"Body": {"stkCallback": {"PhoneNumber": 254712345678}}},
            }
        }
        scrubbed = _before_send_scrub(event, None)
        self.assertEqual(scrubbed["request"]["headers"]["Authorization"], "[REDACTED]")
        self.assertEqual(scrubbed["request"]["headers"]["Accept"], "application/json")
        self.assertEqual(scrubbed["request"]["data"], "[REDACTED]")


if __name__ == "__main__":
    unittest.main()
