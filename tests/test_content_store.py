import asyncio
import unittest
from unittest import mock

from medvault.content_store import (
    ContentStore,
    Degraded,
    Fallback,
    IpfsEndpoint,
    Live,
    StoreConfig,
    resolve_backend,
)
from medvault.errors import BackendUnavailable, NotFound, StoreError
from medvault.ipfs_helper import auth_headers, cat_bytes

from tests.helpers import FALLBACK_URL, PRIMARY_URL, FakeIpfsNode, fake_response


def make_config(**overrides):
    settings = dict(
        primary=IpfsEndpoint(url=PRIMARY_URL),
        fallback=IpfsEndpoint(url=FALLBACK_URL, token="fallback-token"),
        connect_timeout=0.5,
        allow_degraded=True,
    )
    settings.update(overrides)
    return StoreConfig(**settings)


class TestResolveBackend(unittest.TestCase):

    def test_primary_is_preferred(self):
        node = FakeIpfsNode(reachable=(PRIMARY_URL, FALLBACK_URL))
        with node.patch():
            resolution = resolve_backend(make_config())
        self.assertIsInstance(resolution.mode, Live)
        self.assertEqual(resolution.mode.endpoint.url, PRIMARY_URL)
        self.assertEqual(resolution.errors, [])
        self.assertEqual(len(node.calls_to("version")), 1)

    def test_fallback_when_primary_unreachable(self):
        node = FakeIpfsNode(reachable=(FALLBACK_URL,))
        with node.patch():
            resolution = resolve_backend(make_config())
        self.assertIsInstance(resolution.mode, Fallback)
        self.assertEqual([e.endpoint for e in resolution.errors], [PRIMARY_URL])
        fallback_check = node.calls_to("version")[-1]
        self.assertEqual(fallback_check[2], {"Authorization": "Bearer fallback-token"})

    def test_degraded_when_nothing_reachable(self):
        node = FakeIpfsNode(reachable=())
        with node.patch():
            with self.assertLogs("medvault.content_store", level="WARNING"):
                resolution = resolve_backend(make_config())
        self.assertIsInstance(resolution.mode, Degraded)
        self.assertEqual([e.endpoint for e in resolution.errors], [PRIMARY_URL, FALLBACK_URL])

    def test_error_response_rejects_endpoint(self):
        def post(url, **kwargs):
            if url.startswith(PRIMARY_URL):
                return fake_response(401, body={"Message": "unauthorized"})
            return fake_response(body={"Version": "0.29.0"})

        with mock.patch("medvault.ipfs_helper.requests.post", side_effect=post):
            resolution = resolve_backend(make_config())
        self.assertIsInstance(resolution.mode, Fallback)
        self.assertIn("unauthorized", resolution.errors[0].reason)

    def test_degraded_disabled_raises(self):
        node = FakeIpfsNode(reachable=())
        with node.patch():
            with self.assertRaises(BackendUnavailable) as ctx:
                resolve_backend(make_config(allow_degraded=False))
        self.assertEqual(len(ctx.exception.errors), 2)

    def test_no_endpoints_configured(self):
        resolution = resolve_backend(StoreConfig())
        self.assertIsInstance(resolution.mode, Degraded)


class TestContentStore(unittest.IsolatedAsyncioTestCase):

    async def test_live_round_trip(self):
        node = FakeIpfsNode()
        store = ContentStore(make_config())
        blob = bytes(range(256)) * 5
        with node.patch():
            cid = await store.put(blob)
            data = await store.get(cid)
        self.assertTrue(cid.startswith("Qm"))
        self.assertEqual(data, blob)
        self.assertIsInstance(store.mode, Live)

    async def test_string_blobs_are_utf8_encoded(self):
        node = FakeIpfsNode()
        store = ContentStore(make_config())
        with node.patch():
            cid = await store.put("U2FsdGVkX1+token")
            self.assertEqual(await store.get(cid), b"U2FsdGVkX1+token")

    async def test_live_unknown_identifier(self):
        node = FakeIpfsNode()
        store = ContentStore(make_config())
        with node.patch():
            with self.assertRaises(NotFound):
                await store.get("nonexistent-id")

    async def test_degraded_round_trip(self):
        store = ContentStore.with_mode(Degraded())
        blob = b"ciphertext-bytes"
        cid = await store.put(blob)
        self.assertTrue(cid.startswith("Qm"))
        self.assertEqual(await store.get(cid), blob)
        self.assertEqual(await store.put(blob), cid)

    async def test_degraded_unknown_identifier(self):
        store = ContentStore.with_mode(Degraded())
        with self.assertRaises(NotFound):
            await store.get("nonexistent-id")
        with self.assertRaises(NotFound):
            await store.get("")

    async def test_degraded_store_is_per_store_object(self):
        first = ContentStore.with_mode(Degraded())
        second = ContentStore.with_mode(Degraded())
        cid = await first.put(b"data")
        with self.assertRaises(NotFound):
            await second.get(cid)

    async def test_rejects_non_bytes(self):
        store = ContentStore.with_mode(Degraded())
        with self.assertRaises(TypeError):
            await store.put(12345)

    async def test_concurrent_first_use_resolves_once(self):
        node = FakeIpfsNode(reachable=(FALLBACK_URL,))
        store = ContentStore(make_config())
        with node.patch():
            modes = await asyncio.gather(*(store.backend() for _ in range(10)))
        self.assertTrue(all(m is modes[0] for m in modes))
        self.assertIsInstance(modes[0], Fallback)
        # one version call per endpoint, not per caller
        self.assertEqual(len(node.calls_to("version")), 2)

    async def test_mode_is_cached_for_the_store_lifetime(self):
        node = FakeIpfsNode(reachable=())
        store = ContentStore(make_config())
        with node.patch():
            await store.put(b"first")
            node.reachable.add(PRIMARY_URL)
            await store.put(b"second")
        self.assertIsInstance(store.mode, Degraded)
        self.assertEqual(len(node.calls_to("version")), 2)

    async def test_unavailable_is_cached(self):
        node = FakeIpfsNode(reachable=())
        store = ContentStore(make_config(allow_degraded=False))
        with node.patch():
            with self.assertRaises(BackendUnavailable):
                await store.put(b"x")
            with self.assertRaises(BackendUnavailable):
                await store.get("Qmanything")
        self.assertEqual(len(node.calls_to("version")), 2)

    async def test_describe(self):
        node = FakeIpfsNode(reachable=(FALLBACK_URL,))
        store = ContentStore(make_config())
        with node.patch():
            status = await store.describe()
        self.assertEqual(status["mode"], "fallback")
        self.assertEqual(status["endpoint"], FALLBACK_URL)
        self.assertTrue(status["durable"])
        self.assertEqual(status["errors"][0]["endpoint"], PRIMARY_URL)

    async def test_pin(self):
        node = FakeIpfsNode()
        store = ContentStore(make_config())
        with node.patch():
            cid = await store.put(b"pin me")
            self.assertTrue(await store.pin(cid))
        self.assertEqual(len(node.calls_to("pin/add")), 1)


class TestIpfsHelper(unittest.TestCase):

    def test_auth_headers(self):
        self.assertEqual(auth_headers(""), {})
        self.assertEqual(auth_headers(None), {})
        self.assertEqual(auth_headers("abc"), {"Authorization": "Bearer abc"})

    def test_cat_joins_chunks(self):
        response = fake_response(content=b"", chunks=[b"ab", b"", b"cd", b"e"])
        with mock.patch("medvault.ipfs_helper.requests.post", return_value=response):
            self.assertEqual(cat_bytes(PRIMARY_URL, "QmX"), b"abcde")
        response.close.assert_called_once()

    def test_cat_server_error_is_not_not_found(self):
        response = fake_response(500, body={"Message": "context deadline exceeded"})
        with mock.patch("medvault.ipfs_helper.requests.post", return_value=response):
            with self.assertRaises(StoreError):
                cat_bytes(PRIMARY_URL, "QmX")

    def test_cat_404(self):
        response = fake_response(404, content=b"404 page not found")
        with mock.patch("medvault.ipfs_helper.requests.post", return_value=response):
            with self.assertRaises(NotFound):
                cat_bytes(PRIMARY_URL, "QmX")


if __name__ == "__main__":
    unittest.main()
