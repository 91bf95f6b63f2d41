"""Tests for the password hashing helpers."""

from __future__ import annotations

import unittest

from diamondstore import database


class PasswordHashingTests(unittest.TestCase):
    def test_new_hashes_use_pbkdf2(self) -> None:
        hashed = database._hash_password("supersecurepassword")
        self.assertTrue(hashed.startswith("$pbkdf2-sha256$"))
        self.assertTrue(database._verify_password("supersecurepassword", hashed))
        self.assertFalse(database._verify_password("incorrect", hashed))

    def test_malformed_hash_does_not_verify(self) -> None:
        self.assertFalse(database._verify_password("anything", "not-a-real-hash"))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
