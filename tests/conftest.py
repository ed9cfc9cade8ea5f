"""Shared test fixtures for the billing test suite."""

import os
from pathlib import Path
from uuid import UUID

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton so no test inherits a cached secret
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from factories import TEST_ORG_B_ID, TEST_ORG_ID, TEST_USER_B_ID, TEST_USER_ID
from utils.request_context import clear_request_context, organization_context


# =============================================================================
# REQUEST CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_request_context():
    """Ensure clean organization context before and after each test."""
    clear_request_context()
    yield
    clear_request_context()


@pytest.fixture
def org_id() -> UUID:
    return TEST_ORG_ID


@pytest.fixture
def user_id() -> UUID:
    return TEST_USER_ID


@pytest.fixture
def as_test_org(org_id, user_id):
    """Act as the primary test organization."""
    with organization_context(org_id, user_id):
        yield org_id


@pytest.fixture
def as_test_org_b():
    """Act as the secondary test organization."""
    with organization_context(TEST_ORG_B_ID, TEST_USER_B_ID):
        yield TEST_ORG_B_ID


# =============================================================================
# DATABASE FIXTURES
# =============================================================================
# Integration tests need a database loaded with schema/schema.sql. They are
# skipped unless BILLING_TEST_DATABASE_URL (app role, RLS enforced) and
# BILLING_TEST_ADMIN_DATABASE_URL (BYPASSRLS role) are set.


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient (application role, RLS enforced)."""
    url = os.getenv("BILLING_TEST_DATABASE_URL")
    if not url:
        pytest.skip("BILLING_TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(url)
    yield client
    client.close()


@pytest.fixture(scope="session")
def db_admin():
    """Session-scoped admin PostgresClient (bypasses RLS, for setup/teardown and the scheduler)."""
    url = os.getenv("BILLING_TEST_ADMIN_DATABASE_URL")
    if not url:
        pytest.skip("BILLING_TEST_ADMIN_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(url)
    yield client
    client.close()


@pytest.fixture
def clean_db(db_admin):
    """Empty every table and create the two test organizations."""
    db_admin.execute("TRUNCATE audit_log, payments, invoices, customers, users, organizations CASCADE")
    db_admin.execute(
        """
        INSERT INTO organizations (id, owner_id, name, email, currency, invoice_prefix)
        VALUES (%s, %s, 'Org A', 'a@test.local', 'USD', 'INV'),
               (%s, %s, 'Org B', 'b@test.local', 'USD', 'INV')
        """,
        (TEST_ORG_ID, TEST_USER_ID, TEST_ORG_B_ID, TEST_USER_B_ID)
    )
    db_admin.execute(
        """
        INSERT INTO users (id, external_id, email, organization_id)
        VALUES (%s, 'idp|a', 'a@test.local', %s),
               (%s, 'idp|b', 'b@test.local', %s)
        """,
        (TEST_USER_ID, TEST_ORG_ID, TEST_USER_B_ID, TEST_ORG_B_ID)
    )
    yield db_admin
