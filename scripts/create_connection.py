# scripts/create_connection.py
"""
Register a tenant's Grandstream UCM and print the webhook settings to
configure on the PBX.

Example:
    python -m scripts.create_connection --tenant-name "Acme" --name "HQ UCM" \
        --host ucm.example.com --username cdrapi --password secret
"""

from __future__ import annotations

import argparse

from app.db.session import SessionLocal, engine
from app.models import Base, Tenant
from app.services.connection_service import create_connection


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--tenant-id", type=int, default=None, help="Existing tenant id")
    parser.add_argument("--tenant-name", default=None, help="Create a tenant with this name")
    parser.add_argument("--name", required=True, help="Connection display name")
    parser.add_argument("--host", required=True)
    parser.add_argument("--port", type=int, default=8089)
    parser.add_argument("--username", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--verify-ssl", action="store_true")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Public URL of this service, used to print the webhook URL",
    )
    args = parser.parse_args()

    if args.tenant_id is None and not args.tenant_name:
        parser.error("one of --tenant-id or --tenant-name is required")

    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if args.tenant_id is not None:
            tenant = db.get(Tenant, args.tenant_id)
            if tenant is None:
                print(f"[create_connection] Tenant {args.tenant_id} not found")
                return
        else:
            tenant = Tenant(name=args.tenant_name)
            db.add(tenant)
            db.commit()
            db.refresh(tenant)

        connection = create_connection(
            db,
            tenant_id=tenant.id,
            name=args.name,
            host=args.host,
            port=args.port,
            username=args.username,
            password=args.password,
            verify_ssl=args.verify_ssl,
        )

        print(f"[create_connection] Connection {connection.id} created for tenant {tenant.id}")
        print(f"  Webhook URL:    {args.base_url}/api/webhook/grandstream/{connection.id}")
        print(f"  Header:         X-Webhook-Secret: {connection.webhook_secret}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
