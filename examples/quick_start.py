#!/usr/bin/env python3
"""
Quick Start Example - Retention Toolkit

IMPORTANT: This is a demonstration file prioritizing readability over
production readiness. It uses in-memory adapters and the local development
key provider, neither of which survives a restart.

For production use:
- Configure an Azure Key Vault or Managed HSM key provider
- Use the filesystem (or a custom) storage adapter and the SQL queue
- Persist audit batches to SQLite or PostgreSQL

This example stores an object in a short-lived tier, hands out an access
token, lets the worker securely delete the object and prints the
compliance report.
"""

import asyncio

from retention_toolkit import RetentionService
from retention_toolkit.encryption import LocalKeyProvider

CONFIG = {
    "user_tiers": {
        "demo": {"retention_hours": 2 / 3600, "max_file_size": 1024 * 1024},
    },
    "compliance": {"frameworks": ["GDPR"], "audit_level": "enhanced"},
    "queue": {"poll_interval_seconds": 0.5},
}


async def main() -> None:
    """Quick demonstration of the retention lifecycle."""
    print("🗑️  Retention Toolkit - Quick Start Example\n")

    service = RetentionService(CONFIG, key_provider=LocalKeyProvider())
    deleted = asyncio.Event()
    service.subscribe(lambda outcome: deleted.set())

    async with service:
        # 1. Store an object, its deletion is scheduled immediately
        stored = await service.store_object(b"raw sensor capture", tier="demo")
        print(f"✓ Stored {stored.object_id}")
        print(f"  Deletion scheduled for: {stored.policy.delete_at.isoformat()}\n")

        # 2. Grant a downstream system read access
        token = await service.generate_access_token(
            stored.object_id, "demo", ["read", "modify"], issuer_id="analytics"
        )
        print(f"✓ Token issued with permissions: {token.permissions}")
        await service.validate_access(token.token, "read")
        print("✓ Read access validated\n")

        # 3. Wait for the worker to securely delete the object
        await asyncio.wait_for(deleted.wait(), timeout=30)
        print("✓ Object securely deleted by the worker\n")

        # 4. Report
        report = await service.generate_compliance_report()
        print("✓ Compliance report")
        print(f"  Frameworks: {', '.join(report['frameworks'])}")
        print(f"  Deletions completed: {report['deletions_completed']}")
        print(f"  Compliance records: {report['compliance_records']}")


if __name__ == "__main__":
    asyncio.run(main())
