import base64
import unittest

from medvault.crypto import aes
from medvault.crypto.key_derivation import derive_key
from medvault.errors import DecryptionFailure, EmptyInput

from tests.helpers import OTHER_PATIENT, PATIENT

EXAMPLE_KEY = derive_key("0xABC...123")
EXAMPLE_PLAINTEXT = "Diagnosis: Type 2 Diabetes"

# Produced with: openssl enc -aes-256-cbc -md md5 -salt -pass pass:<key> -base64
OPENSSL_TEXT_TOKEN = "U2FsdGVkX1+AUrVQZTtyU3/Jxmb87QdVLkSf51wEt8l1n5DYMemy941uuiifp8zw"
OPENSSL_BINARY_TOKEN = "U2FsdGVkX18K0tBIzKLqqB500YIiVg8SDKfyGTXoYuA="
OPENSSL_BINARY_PLAINTEXT = b"MZ\x00\x01binary\xff"


class TestLegacyFormat(unittest.TestCase):

    def setUp(self):
        self.key = derive_key(PATIENT)

    def test_round_trip(self):
        for plaintext in ("a", EXAMPLE_PLAINTEXT, "x" * 16, "Ünïcødé ✓ 糖尿病", '{"diagnosis": "flu"}' * 50):
            token = aes.encrypt(plaintext, self.key)
            self.assertEqual(aes.decrypt(token, self.key), plaintext)

    def test_token_is_salted_base64(self):
        token = aes.encrypt(EXAMPLE_PLAINTEXT, self.key)
        self.assertTrue(token.startswith("U2FsdGVkX1"))
        raw = base64.b64decode(token)
        self.assertEqual(raw[:8], b"Salted__")
        self.assertEqual((len(raw) - 16) % 16, 0)
        self.assertEqual(aes.token_format(token), aes.FORMAT_LEGACY)

    def test_ciphertext_is_not_byte_stable(self):
        first = aes.encrypt(EXAMPLE_PLAINTEXT, self.key)
        second = aes.encrypt(EXAMPLE_PLAINTEXT, self.key)
        self.assertNotEqual(first, second)
        self.assertEqual(aes.decrypt(first, self.key), aes.decrypt(second, self.key))

    def test_decrypts_openssl_token(self):
        self.assertEqual(aes.decrypt(OPENSSL_TEXT_TOKEN, EXAMPLE_KEY), EXAMPLE_PLAINTEXT)

    def test_decrypts_openssl_binary_token(self):
        self.assertEqual(aes.decrypt_buffer(OPENSSL_BINARY_TOKEN, EXAMPLE_KEY), OPENSSL_BINARY_PLAINTEXT)

    def test_evp_bytes_to_key_sizes(self):
        key, iv = aes.evp_bytes_to_key(b"passphrase", b"12345678")
        self.assertEqual(len(key), 32)
        self.assertEqual(len(iv), 16)
        self.assertEqual((key, iv), aes.evp_bytes_to_key(b"passphrase", b"12345678"))

    def test_wrong_key_does_not_recover_plaintext(self):
        token = aes.encrypt(EXAMPLE_PLAINTEXT, self.key)
        try:
            result = aes.decrypt(token, derive_key(OTHER_PATIENT))
        except DecryptionFailure:
            result = None
        self.assertNotEqual(result, EXAMPLE_PLAINTEXT)

    def test_wrong_key_on_openssl_token_fails(self):
        with self.assertRaises(DecryptionFailure):
            aes.decrypt(OPENSSL_TEXT_TOKEN, self.key)

    def test_truncated_token(self):
        token = aes.encrypt(EXAMPLE_PLAINTEXT * 4, self.key)
        raw = base64.b64decode(token)
        truncated = base64.b64encode(raw[:-5]).decode()
        with self.assertRaises(DecryptionFailure):
            aes.decrypt(truncated, self.key)
        with self.assertRaises(DecryptionFailure):
            aes.decrypt(base64.b64encode(raw[:12]).decode(), self.key)


class TestAuthenticatedFormat(unittest.TestCase):

    def setUp(self):
        self.key = derive_key(PATIENT)

    def test_round_trip(self):
        token = aes.encrypt(EXAMPLE_PLAINTEXT, self.key, aes.FORMAT_AUTHENTICATED)
        self.assertEqual(aes.token_format(token), aes.FORMAT_AUTHENTICATED)
        self.assertEqual(aes.decrypt(token, self.key), EXAMPLE_PLAINTEXT)

    def test_wrong_key_fails(self):
        token = aes.encrypt(EXAMPLE_PLAINTEXT, self.key, aes.FORMAT_AUTHENTICATED)
        with self.assertRaises(DecryptionFailure):
            aes.decrypt(token, derive_key(OTHER_PATIENT))

    def test_tampering_is_detected(self):
        raw = bytearray(base64.b64decode(aes.encrypt(EXAMPLE_PLAINTEXT, self.key, aes.FORMAT_AUTHENTICATED)))
        raw[40] ^= 0x01
        with self.assertRaises(DecryptionFailure):
            aes.decrypt(base64.b64encode(bytes(raw)).decode(), self.key)

    def test_buffer_round_trip(self):
        data = bytes(range(256)) * 3
        token = aes.encrypt_buffer(data, self.key, aes.FORMAT_AUTHENTICATED)
        self.assertEqual(aes.decrypt_buffer(token, self.key), data)


class TestBuffers(unittest.TestCase):

    def setUp(self):
        self.key = derive_key(PATIENT)

    def test_round_trip_preserves_length_and_content(self):
        for data in (b"\x00", b"\x00" * 15, b"\xff" * 16, bytes(range(256)), b"%PDF-1.4\n" + b"\x89" * 1000):
            restored = aes.decrypt_buffer(aes.encrypt_buffer(data, self.key), self.key)
            self.assertEqual(len(restored), len(data))
            self.assertEqual(restored, data)

    def test_accepts_bytearray_and_memoryview(self):
        data = bytearray(b"scan-bytes")
        self.assertEqual(aes.decrypt_buffer(aes.encrypt_buffer(data, self.key), self.key), bytes(data))
        self.assertEqual(aes.decrypt_buffer(aes.encrypt_buffer(memoryview(data), self.key), self.key), bytes(data))


class TestInvalidInput(unittest.TestCase):

    def setUp(self):
        self.key = derive_key(PATIENT)

    def test_empty_plaintext(self):
        with self.assertRaises(EmptyInput):
            aes.encrypt("", self.key)
        with self.assertRaises(EmptyInput):
            aes.encrypt_buffer(b"", self.key)

    def test_empty_key(self):
        with self.assertRaises(EmptyInput):
            aes.encrypt(EXAMPLE_PLAINTEXT, "")

    def test_unknown_version(self):
        with self.assertRaises(ValueError):
            aes.encrypt(EXAMPLE_PLAINTEXT, self.key, version=9)

    def test_garbage_tokens(self):
        for token in ("", "   ", "not base64 at all!", base64.b64encode(b"hello world").decode(), b"\xff\xfe"):
            with self.assertRaises(DecryptionFailure):
                aes.decrypt(token, self.key)


if __name__ == "__main__":
    unittest.main()
