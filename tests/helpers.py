import hashlib
import json
import logging
from unittest import mock

import requests

for name in ("medvault", "medvault.content_store", "medvault.crypto", "medvault.pipeline"):
    logging.getLogger(name).setLevel(logging.CRITICAL)

# Test accounts
TEST_ACCOUNTS = {
    "Patient 1": {
        "address": "0xEDB64f85F1fC9357EcA100C2970f7F84a5faAD4A",
        "role": "patient"
    },
    "Patient 2": {
        "address": "0x3Fa2c09c14453c7acaC39E3fd57e0c6F1da3f5ce",
        "role": "patient"
    },
    "Hospital 1": {
        "address": "0x28B317594b44483D24EE8AdCb13A1b148497C6ba",
        "role": "hospital"
    },
}

PATIENT = TEST_ACCOUNTS["Patient 1"]["address"]
OTHER_PATIENT = TEST_ACCOUNTS["Patient 2"]["address"]
HOSPITAL = TEST_ACCOUNTS["Hospital 1"]["address"]

PRIMARY_URL = "http://primary.test:5001/api/v0"
FALLBACK_URL = "https://fallback.test/api/v0"


def fake_response(status_code=200, body=None, content=b"", chunks=None):
    """Build a stand-in for requests.Response"""
    response = mock.Mock()
    response.status_code = status_code
    if body is not None:
        response.json.return_value = body
        response.text = json.dumps(body)
    else:
        response.json.side_effect = ValueError("not json")
        response.text = content.decode("utf-8", errors="replace")
    response.iter_content.return_value = iter(chunks if chunks is not None else [content])
    return response


class FakeIpfsNode:
    """In-process IPFS HTTP API double, patched in for requests.post"""

    def __init__(self, reachable=(PRIMARY_URL,)):
        self.reachable = set(reachable)
        self.blobs = {}
        self.calls = []

    def post(self, url, params=None, files=None, headers=None, timeout=None, stream=False):
        if url.endswith("/pin/add"):
            base, command = url[:-len("/pin/add")], "pin/add"
        else:
            base, command = url.rsplit("/", 1)
        self.calls.append((base, command, headers or {}))
        if base not in self.reachable:
            raise requests.ConnectionError(f"cannot reach {base}")

        if command == "version":
            return fake_response(body={"Version": "0.29.0"})
        if command == "add":
            data = files["file"][1]
            cid = "Qm" + hashlib.sha1(data).hexdigest() + "abcd"
            self.blobs[cid] = data
            return fake_response(body={"Name": "record", "Hash": cid, "Size": str(len(data))})
        if command == "cat":
            cid = params["arg"]
            if cid not in self.blobs:
                return fake_response(500, body={"Message": f"invalid path \"{cid}\": invalid cid", "Code": 0, "Type": "error"})
            data = self.blobs[cid]
            return fake_response(content=data, chunks=[data[i:i + 7] for i in range(0, len(data), 7)])
        if command == "pin/add":
            return fake_response(body={"Pins": [params["arg"]]})
        return fake_response(404, content=b"404 page not found")

    def calls_to(self, command):
        return [c for c in self.calls if c[1] == command]

    def patch(self):
        return mock.patch("medvault.ipfs_helper.requests.post", side_effect=self.post)
