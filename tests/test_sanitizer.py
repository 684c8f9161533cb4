#!/usr/bin/env python3
"""
Session payload cleaning, public field selection and share slugs.
"""
import unittest

from common.error_handling import BusinessLogicError, ErrorCodes
from session_service.sanitizer import public_view, sanitize_couple_data, sanitize_string, share_slug
from support import COUPLE_DATA

class TestSanitizeString(unittest.TestCase):

    def test_strips_script_and_handlers(self):
        self.assertEqual(sanitize_string("Hi <script>alert(1)</script>there"), "Hi there")
        self.assertEqual(sanitize_string("<a href='javascript:x()'>"), "<a href='x()'>")
        self.assertEqual(sanitize_string('<img onerror = "x">'), '<img  "x">')
        self.assertEqual(sanitize_string("  plain text  "), "plain text")

class TestCoupleData(unittest.TestCase):

    def test_clean_payload_keeps_camel_case_fields(self):
        data = sanitize_couple_data(COUPLE_DATA)
        self.assertEqual(data["senderName"], "Ajmal")
        self.assertEqual(data["finalLetter"], "Hello there")
        self.assertNotIn("giftTitle", data)

    def test_unknown_fields_are_dropped(self):
        data = sanitize_couple_data({**COUPLE_DATA, "amount": 1, "status": "paid", "isPaid": True})
        for name in ("amount", "status", "isPaid"):
            self.assertNotIn(name, data)

    def test_media_urls_must_be_allow_listed_https(self):
        ok = sanitize_couple_data({**COUPLE_DATA, "userImageUrl": "https://firebasestorage.googleapis.com/v0/b/x.jpg"})
        self.assertIn("userImageUrl", ok)

        for url in ("http://firebasestorage.googleapis.com/x.jpg",
                    "https://evil.example.com/x.jpg",
                    "https://googleapis.com.evil.example/x.jpg"):
            with self.assertRaises(BusinessLogicError) as ctx:
                sanitize_couple_data({**COUPLE_DATA, "userImageUrl": url})
            self.assertEqual(ctx.exception.code, ErrorCodes.VALIDATION_ERROR)
            self.assertEqual(ctx.exception.message, "Invalid field 'coupleData.userImageUrl'.")

    def test_bounds_are_enforced(self):
        cases = [
            {**COUPLE_DATA, "senderName": ""},
            {**COUPLE_DATA, "senderName": "x" * 101},
            {**COUPLE_DATA, "theme": "neon"},
            {**COUPLE_DATA, "finalLetter": "x" * 10_001},
            {**COUPLE_DATA, "coupons": [{"id": str(i), "title": "t", "description": "d", "icon": "*",
                                         "isOpen": False} for i in range(11)]},
        ]
        for payload in cases:
            with self.assertRaises(BusinessLogicError):
                sanitize_couple_data(payload)
        del_recipient = {k: v for k, v in COUPLE_DATA.items() if k != "recipientName"}
        with self.assertRaises(BusinessLogicError):
            sanitize_couple_data(del_recipient)

    def test_nested_items_are_cleaned(self):
        data = sanitize_couple_data({**COUPLE_DATA, "coupons": [{
            "id": "c1", "title": "Dinner<script>x</script>", "description": "Anywhere", "icon": "*",
            "isOpen": False, "price": 5,
        }]})
        self.assertEqual(data["coupons"], [{"id": "c1", "title": "Dinner", "description": "Anywhere",
                                            "icon": "*", "isOpen": False}])

class TestPublicView(unittest.TestCase):

    def test_only_public_fields_are_returned(self):
        view = public_view({"senderName": "A", "writingMode": "assisted", "relationshipIntent": "x", "theme": "pearl"})
        self.assertEqual(view, {"senderName": "A", "theme": "pearl"})

class TestShareSlug(unittest.TestCase):

    def test_slug_format(self):
        self.assertEqual(share_slug("Ajmal", "Saniya", "k8f2x9m1"), "ajmal-saniya-k8f2x9m1")
        self.assertEqual(share_slug("Mary Jane!", "O'Neil", "abcd1234"), "mary-jane-o-neil-abcd1234")
        self.assertEqual(share_slug("", "  ", "abcd1234"), "abcd1234")
        self.assertEqual(share_slug("Å" * 30, None, "abcd1234"), "abcd1234")

    def test_long_names_are_cut(self):
        slug = share_slug("a" * 40, "b" * 40, "abcd1234")
        self.assertEqual(slug, f"{'a' * 20}-{'b' * 20}-abcd1234")
        self.assertEqual(slug.rsplit("-", 1)[1], "abcd1234")

if __name__ == "__main__":
    unittest.main(verbosity=2)
