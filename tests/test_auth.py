import unittest

from fastapi import HTTPException
from sqlmodel import Session
from starlette.requests import Request

from retail_pos.auth import (
    authenticate,
    create_token,
    create_user,
    password_matches,
    read_token,
    require_roles,
)
from retail_pos.errors import ValidationError
from tests.support import memory_engine


def request_with(token=None):
    headers = [(b"cookie", f"token={token}".encode())] if token else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


class AuthTest(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()
        self.s = Session(self.engine)

    def tearDown(self):
        self.s.close()

    def test_create_and_authenticate(self):
        u = create_user(self.s, " cashier ", "s3cret", role="billing")
        self.assertEqual((u.username, u.role), ("cashier", "BILLING"))
        self.assertEqual(authenticate(self.s, "cashier", "s3cret").id, u.id)
        self.assertIsNone(authenticate(self.s, "cashier", "wrong"))

        with self.assertRaises(ValidationError):
            create_user(self.s, "cashier", "other")
        with self.assertRaises(ValidationError):
            create_user(self.s, "clerk", "pw", role="MANAGER")
        with self.assertRaises(ValidationError):
            create_user(self.s, "clerk", "")

    def test_malformed_hash_does_not_match(self):
        self.assertFalse(password_matches("x", "not-a-hash"))

    def test_token_round_trip(self):
        claims = read_token(create_token("stock1", "INVENTORY"))
        self.assertEqual((claims["sub"], claims["role"]), ("stock1", "INVENTORY"))
        with self.assertRaises(ValidationError):
            create_token("stock1", "OWNER")

    def test_guard(self):
        guard = require_roles("ADMIN", "BILLING")
        self.assertEqual(guard(request_with(create_token("c", "BILLING")))["sub"], "c")

        for token, status in ((None, 401), ("garbage", 401), (create_token("i", "INVENTORY"), 403)):
            with self.assertRaises(HTTPException) as ctx:
                guard(request_with(token))
            self.assertEqual(ctx.exception.status_code, status)

        with self.assertRaises(ValueError):
            require_roles("CASHIER")


if __name__ == "__main__":
    unittest.main()
