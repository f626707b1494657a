"""
Tests for the browser cookie readers (Safari binarycookies, Chrome, Firefox)
and the shared cookie helpers.
"""

import os
import struct
import sys
import tempfile
import unittest
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

import cookies_chrome
import cookies_firefox
from cookie_utils import (
    build_cookie_header, cookies_from_jar, host_matches_domains,
    parse_cookie_source_list, parse_sqlite_rows,
)
from cookies_safari import parse_binary_cookies, read_safari_cookies


def _safari_record(domain, name, value, path="/"):
    strings = b""
    offsets = []
    header_size = 56
    for text in (domain, name, path, value):
        offsets.append(header_size + len(strings))
        strings += text.encode("utf-8") + b"\x00"
    size = header_size + len(strings)
    header = (
        struct.pack("<IIII", size, 0, 0, 0)
        + struct.pack("<4I", *offsets)
        + b"\x00" * 8
        + struct.pack("<dd", 0.0, 0.0)
    )
    return header + strings


def _safari_file(records):
    count = len(records)
    header_len = 4 + 4 + 4 * count + 4
    offsets = []
    body = b""
    for record in records:
        offsets.append(header_len + len(body))
        body += record
    page = (
        b"\x00\x00\x01\x00"
        + struct.pack("<I", count)
        + struct.pack(f"<{count}I", *offsets)
        + b"\x00" * 4
        + body
    )
    return b"cook" + struct.pack(">I", 1) + struct.pack(">I", len(page)) + page


class TestSafariBinaryCookies(unittest.TestCase):

    def test_extracts_twitter_cookies(self):
        data = _safari_file([
            _safari_record(".x.com", "auth_token", "abc123"),
            _safari_record(".x.com", "ct0", "def456"),
            _safari_record(".example.com", "auth_token", "wrong"),
        ])

        jar = parse_binary_cookies(data)

        self.assertEqual(jar, {"auth_token": "abc123", "ct0": "def456"})
        cookies = cookies_from_jar(jar, "Safari")
        self.assertTrue(cookies.complete)
        self.assertEqual(cookies.cookie_header, "auth_token=abc123; ct0=def456")

    def test_bad_magic_returns_empty_jar(self):
        self.assertEqual(parse_binary_cookies(b"nope" + b"\x00" * 32), {})

    def test_truncated_record_is_skipped(self):
        good = _safari_record("x.com", "ct0", "token")
        data = _safari_file([good])
        # Page shorter than its declared size
        self.assertEqual(parse_binary_cookies(data[:-1]), {})

    def test_read_from_file(self):
        data = _safari_file([
            _safari_record(".twitter.com", "auth_token", "aaa"),
            _safari_record(".twitter.com", "ct0", "bbb"),
        ])
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "Cookies.binarycookies")
            with open(path, "wb") as f:
                f.write(data)

            result = read_safari_cookies(cookie_file=path)

        self.assertEqual(result.cookies.auth_token, "aaa")
        self.assertEqual(result.cookies.ct0, "bbb")
        self.assertEqual(result.cookies.source, "Safari")
        self.assertEqual(result.warnings, [])

    def test_missing_file_warns(self):
        result = read_safari_cookies(cookie_file="/nonexistent/Cookies.binarycookies")
        self.assertFalse(result.cookies.complete)
        self.assertIn("Safari cookies database not found.", result.warnings)


class TestChromeCookies(unittest.TestCase):

    def test_decrypts_v10_value(self):
        key = cookies_chrome.derive_chrome_key("peanuts")
        padder = padding.PKCS7(128).padder()
        padded = padder.update(b"secretvalue") + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(cookies_chrome.CHROME_IV)).encryptor()
        encrypted = b"v10" + encryptor.update(padded) + encryptor.finalize()

        value = cookies_chrome.decrypt_chrome_value(encrypted.hex(), lambda: key)

        self.assertEqual(value, "secretvalue")

    def test_encrypted_value_without_key_is_dropped(self):
        self.assertIsNone(cookies_chrome.decrypt_chrome_value((b"v10" + b"\x00" * 16).hex(), lambda: None))

    def test_plaintext_value_passes_through(self):
        self.assertEqual(cookies_chrome.decrypt_chrome_value(b"plainvalue".hex(), lambda: None), "plainvalue")

    def test_invalid_hex_returns_none(self):
        self.assertIsNone(cookies_chrome.decrypt_chrome_value("zz", lambda: None))

    def test_reads_only_exact_cookie_names(self):
        rows = "\n".join([
            f"auth_token_legacy|{b'legacyvalue'.hex()}",
            f"auth_token|{b'authvalue'.hex()}",
            f"ct0|{b'csrfvalue'.hex()}",
        ])
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "Cookies")
            with open(db_path, "wb") as f:
                f.write(b"sqlite")
            with patch.object(cookies_chrome, "run_sqlite_query", return_value=rows) as mock_query:
                result = cookies_chrome.read_chrome_cookies(db_path=db_path, passphrase_reader=lambda: None)

        self.assertEqual(result.cookies.auth_token, "authvalue")
        self.assertEqual(result.cookies.ct0, "csrfvalue")
        self.assertEqual(result.cookies.source, "Chrome default profile")
        self.assertIn("auth_token_legacy=legacyvalue", result.cookies.cookie_header)
        query = mock_query.call_args[0][1]
        self.assertIn("'.x.com'", query)
        self.assertIn("'twitter.com'", query)

    def test_missing_database_warns(self):
        result = cookies_chrome.read_chrome_cookies(db_path="/nonexistent/Cookies")
        self.assertFalse(result.cookies.complete)
        self.assertTrue(result.warnings[0].startswith("Chrome cookies database not found"))

    def test_resolves_network_cookies_location(self):
        with tempfile.TemporaryDirectory() as home:
            network_dir = os.path.join(home, ".config", "google-chrome", "Profile 1", "Network")
            os.makedirs(network_dir)
            db_path = os.path.join(network_dir, "Cookies")
            open(db_path, "wb").close()

            resolved = cookies_chrome.resolve_chrome_cookie_db("Profile 1", home=home, platform="linux", env={})

        self.assertEqual(resolved, db_path)


class TestFirefoxCookies(unittest.TestCase):

    def _make_profiles(self, root, *names):
        for name in names:
            os.makedirs(os.path.join(root, name))

    def test_prefers_default_release_profile(self):
        with tempfile.TemporaryDirectory() as root:
            self._make_profiles(root, "aaa.default", "bbb.default-release")
            self.assertEqual(cookies_firefox.pick_firefox_profile(root),
                             os.path.join(root, "bbb.default-release"))

    def test_explicit_profile_must_exist(self):
        with tempfile.TemporaryDirectory() as root:
            self._make_profiles(root, "work")
            self.assertEqual(cookies_firefox.pick_firefox_profile(root, "work"), os.path.join(root, "work"))
            self.assertIsNone(cookies_firefox.pick_firefox_profile(root, "missing"))

    def test_reads_cookies_from_profile(self):
        with tempfile.TemporaryDirectory() as root:
            self._make_profiles(root, "abc.default-release")
            open(os.path.join(root, "abc.default-release", "cookies.sqlite"), "wb").close()
            rows = "auth_token|tok\nct0|csrf|with-pipe\n"
            with patch.object(cookies_firefox, "run_sqlite_query", return_value=rows):
                result = cookies_firefox.read_firefox_cookies(profiles_root=root)

        self.assertEqual(result.cookies.auth_token, "tok")
        self.assertEqual(result.cookies.ct0, "csrf|with-pipe")
        self.assertEqual(result.cookies.source, "Firefox default profile")

    def test_missing_profile_warns(self):
        with tempfile.TemporaryDirectory() as root:
            result = cookies_firefox.read_firefox_cookies(profiles_root=root)
        self.assertIn("Firefox cookies database not found.", result.warnings)


class TestCookieHelpers(unittest.TestCase):

    def test_host_matching(self):
        self.assertTrue(host_matches_domains(".x.com"))
        self.assertTrue(host_matches_domains("api.twitter.com"))
        self.assertFalse(host_matches_domains("notx.com"))
        self.assertFalse(host_matches_domains(""))

    def test_cookie_header_is_sorted(self):
        self.assertEqual(build_cookie_header({"ct0": "b", "auth_token": "a"}), "auth_token=a; ct0=b")
        self.assertIsNone(build_cookie_header({}))

    def test_parse_sqlite_rows(self):
        self.assertEqual(parse_sqlite_rows("a|1\n\nnoseparator\nb|2|3\n"), [("a", "1"), ("b", "2|3")])

    def test_cookie_source_list(self):
        warnings = []
        self.assertEqual(parse_cookie_source_list("Chrome, safari chrome", warnings), ["chrome", "safari"])
        self.assertEqual(warnings, [])

    def test_unknown_cookie_source_warns(self):
        warnings = []
        result = parse_cookie_source_list(["foo", "firefox"], warnings, origin="TWITTER_COOKIE_SOURCE")
        self.assertEqual(result, ["firefox"])
        self.assertEqual(warnings, ['Unknown cookie source "foo" in TWITTER_COOKIE_SOURCE'])

    def test_cookie_source_list_none_when_nothing_recognised(self):
        warnings = []
        self.assertIsNone(parse_cookie_source_list("edge", warnings))
        self.assertEqual(len(warnings), 1)


if __name__ == "__main__":
    unittest.main()
