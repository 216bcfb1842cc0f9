#!/usr/bin/env python3
"""
Check which content store backend this environment resolves to and run one
encrypt/store/fetch/decrypt round trip through it.

Usage:
    python check_storage.py [identifier]
"""

import asyncio
import logging
import sys

from medvault.errors import MedvaultError
from medvault.pipeline import build_pipeline

SAMPLE_IDENTIFIER = "0xEDB64f85F1fC9357EcA100C2970f7F84a5faAD4A"
SAMPLE_PLAINTEXT = "Diagnosis: Type 2 Diabetes"


async def check_storage(identifier):
    pipeline = build_pipeline()

    status = await pipeline.store.describe()
    print(f"Backend mode: {status['mode']}")
    if status.get("endpoint"):
        print(f"  Endpoint: {status['endpoint']}")
    for error in status["errors"]:
        print(f"❌ {error['endpoint']}: {error['reason']}")
    if not status["durable"]:
        print("⚠️ Using the in-memory store; identifiers will not survive this process")

    payload = await pipeline.create_record_payload(SAMPLE_PLAINTEXT, identifier)
    print(f"✅ Stored sample record as {payload.content_id}")

    plaintext = await pipeline.view_record_payload(payload.content_id, identifier)
    if plaintext != SAMPLE_PLAINTEXT:
        print("❌ Round trip returned different content")
        return False
    print("✅ Round trip verified")
    return True


def main():
    logging.basicConfig(level=logging.WARNING)
    identifier = sys.argv[1] if len(sys.argv) > 1 else SAMPLE_IDENTIFIER
    try:
        ok = asyncio.run(check_storage(identifier))
    except MedvaultError as e:
        print(f"❌ Storage check failed: {e}")
        ok = False
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
