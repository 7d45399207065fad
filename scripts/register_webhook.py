"""Register (or update) an N8N webhook for a tenant workflow.

The bearer token is encrypted with FIELD_ENCRYPTION_KEY before it is stored.

Usage:
    python scripts/register_webhook.py \
        --tenant-id 1 \
        --workflow handoff_requested \
        --url "https://n8n.example.com/webhook/handoff" \
        --token "secret-token"
"""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from app.core.encryption import EncryptionService
from app.persistence.database import AsyncSessionLocal
from app.persistence.models.webhook import WebhookRegistration
from app.persistence.repositories.webhook_repository import WebhookRepository


async def register_webhook(
    tenant_id: int,
    workflow_name: str,
    url: str,
    token: str | None = None,
    description: str | None = None,
    inactive: bool = False,
) -> WebhookRegistration:
    """Create the registration, or update the existing one for the workflow."""
    encryption = EncryptionService.from_settings()
    auth_token = encryption.encrypt(token) if token else None

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(WebhookRegistration).where(
                WebhookRegistration.tenant_id == tenant_id,
                WebhookRegistration.workflow_name == workflow_name,
            )
        )
        existing = result.scalar_one_or_none()

        if existing:
            existing.webhook_url = url
            existing.auth_token = auth_token
            existing.description = description
            existing.is_active = not inactive
            await session.commit()
            print(f"Updated webhook {existing.id} ({workflow_name}) for tenant {tenant_id}")
            return existing

        webhook = await WebhookRepository(session).create(
            tenant_id,
            workflow_name=workflow_name,
            webhook_url=url,
            auth_token=auth_token,
            description=description,
            is_active=not inactive,
        )
        print(f"Created webhook {webhook.id} ({workflow_name}) for tenant {tenant_id}")
        return webhook


def main():
    parser = argparse.ArgumentParser(description="Register an N8N webhook for a tenant")
    parser.add_argument("--tenant-id", type=int, required=True)
    parser.add_argument("--workflow", required=True, help="Workflow name, e.g. handoff_requested")
    parser.add_argument("--url", required=True)
    parser.add_argument("--token", help="Bearer token (stored encrypted)")
    parser.add_argument("--description")
    parser.add_argument("--inactive", action="store_true", help="Register disabled")
    args = parser.parse_args()

    asyncio.run(
        register_webhook(
            args.tenant_id,
            args.workflow,
            args.url,
            token=args.token,
            description=args.description,
            inactive=args.inactive,
        )
    )


if __name__ == "__main__":
    main()
