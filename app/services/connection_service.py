# app/services/connection_service.py
from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.models.pbx_connection import ConnectionStatus, PbxConnection
from app.services.encryption_service import CredentialStore, DecryptionError
from app.services.pbx_client import ConnectionTestResult, GrandstreamClient, PbxConfig

log = logging.getLogger(__name__)

ConnectionTester = Callable[[PbxConfig, int], ConnectionTestResult]


def default_connection_tester(config: PbxConfig, timeout_ms: int) -> ConnectionTestResult:
    return GrandstreamClient(config).test_connection(timeout_ms=timeout_ms)


def generate_webhook_secret() -> str:
    return secrets.token_hex(32)


def create_connection(
    db: Session,
    *,
    tenant_id: int,
    name: str,
    host: str,
    username: str,
    password: str,
    port: int = 8089,
    verify_ssl: bool = False,
    credentials: Optional[CredentialStore] = None,
) -> PbxConnection:
    """
    Register a PBX for a tenant. The password is stored encrypted only.
    """
    store = credentials or CredentialStore.from_settings()
    connection = PbxConnection(
        tenant_id=tenant_id,
        name=name,
        host=host,
        port=port,
        username=username,
        password_encrypted=store.encrypt(password),
        verify_ssl=verify_ssl,
        webhook_secret=generate_webhook_secret(),
        status=ConnectionStatus.ACTIVE.value,
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


def connection_config(connection: PbxConnection, password: str) -> PbxConfig:
    return PbxConfig(
        host=connection.host,
        port=connection.port,
        username=connection.username,
        password=password,
        verify_ssl=bool(connection.verify_ssl),
    )


def test_pbx_connection(
    db: Session,
    connection: PbxConnection,
    tester: ConnectionTester = default_connection_tester,
    credentials: Optional[CredentialStore] = None,
    timeout_ms: int = 10000,
) -> ConnectionTestResult:
    """
    Try the stored credentials against the PBX and record the outcome on
    the connection (status, last_error, last_connected_at).
    """
    store = credentials or CredentialStore.from_settings()
    try:
        password = store.decrypt(connection.password_encrypted)
    except DecryptionError as exc:
        log.error("Failed to decrypt password for connection %s: %s", connection.id, exc)
        result = ConnectionTestResult(False, "Failed to decrypt password", str(exc), 0)
    else:
        result = tester(connection_config(connection, password), timeout_ms)

    if result.success:
        connection.status = ConnectionStatus.ACTIVE.value
        connection.last_error = None
        connection.last_connected_at = datetime.utcnow()
    else:
        connection.status = ConnectionStatus.ERROR.value
        connection.last_error = result.error or result.message

    db.commit()
    db.refresh(connection)
    return result
