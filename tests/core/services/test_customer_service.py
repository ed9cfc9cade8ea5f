"""Tests for CustomerService (real database, RLS enforced)."""

import pytest
from uuid import uuid4


@pytest.fixture
def customer_service(db, clean_db):
    """CustomerService with real DB."""
    from core.services.customer_service import CustomerService
    from core.audit import AuditLogger

    audit = AuditLogger(db)
    return CustomerService(db, audit)


class TestCustomerCreate:
    """Tests for CustomerService.create."""

    def test_creates_customer(self, as_test_org, customer_service):
        """Creates customer with provided data."""
        from core.models import CustomerCreate

        data = CustomerCreate(name="Alice Smith", email="Alice@Test.com", phone="555-1234")

        customer = customer_service.create(data)

        assert customer.name == "Alice Smith"
        assert customer.email == "alice@test.com"
        assert customer.is_active
        assert customer.invoice_settings is None

    def test_sets_organization_from_context(self, as_test_org, org_id, customer_service):
        """organization_id comes from context, not parameter."""
        from core.models import CustomerCreate

        customer = customer_service.create(CustomerCreate(name="Bob", email="bob@test.com"))

        assert customer.organization_id == org_id

    def test_stores_numbering_override(self, as_test_org, customer_service):
        from core.models import CustomerCreate, CustomerInvoiceSettings

        customer = customer_service.create(CustomerCreate(
            name="Acme", email="ap@acme.test",
            invoice_settings=CustomerInvoiceSettings(prefix="ACME", next_number=7),
        ))

        assert customer.invoice_settings.prefix == "ACME"
        assert customer.invoice_settings.next_number == 7

    def test_duplicate_active_email_rejected(self, as_test_org, customer_service):
        from core.exceptions import DuplicateCustomerEmail
        from core.models import CustomerCreate

        customer_service.create(CustomerCreate(name="First", email="dup@test.com"))

        with pytest.raises(DuplicateCustomerEmail):
            customer_service.create(CustomerCreate(name="Second", email="DUP@test.com"))

    def test_email_reusable_after_delete(self, as_test_org, customer_service):
        from core.models import CustomerCreate

        first = customer_service.create(CustomerCreate(name="First", email="reuse@test.com"))
        customer_service.delete(first.id)

        second = customer_service.create(CustomerCreate(name="Second", email="reuse@test.com"))
        assert second.id != first.id

    def test_logs_audit_entry(self, db, as_test_org, customer_service):
        """Create logged to audit_log."""
        from core.models import CustomerCreate

        customer = customer_service.create(CustomerCreate(name="Acme Corp", email="acme@test.com"))

        entries = db.execute(
            "SELECT * FROM audit_log WHERE entity_id = %s",
            (customer.id,)
        )
        assert len(entries) == 1
        assert entries[0]["action"] == "create"
        assert entries[0]["entity_type"] == "customer"


class TestCustomerGetById:
    """Tests for CustomerService.get_by_id."""

    def test_returns_none_for_nonexistent(self, as_test_org, customer_service):
        """Missing ID returns None."""
        assert customer_service.get_by_id(uuid4()) is None

    def test_rls_blocks_other_organizations_customer(self, org_id, customer_service):
        """A customer of organization A is invisible to organization B."""
        from core.models import CustomerCreate
        from utils.request_context import organization_context
        from factories import TEST_ORG_B_ID

        with organization_context(org_id):
            created = customer_service.create(CustomerCreate(name="Private", email="p@test.com"))

        with organization_context(TEST_ORG_B_ID):
            assert customer_service.get_by_id(created.id) is None

    def test_get_active_rejects_deleted(self, as_test_org, customer_service):
        from core.exceptions import CustomerNotFound
        from core.models import CustomerCreate

        created = customer_service.create(CustomerCreate(name="Gone", email="gone@test.com"))
        customer_service.delete(created.id)

        assert customer_service.get_by_id(created.id) is not None
        with pytest.raises(CustomerNotFound):
            customer_service.get_active(created.id)


class TestCustomerUpdate:
    """Tests for CustomerService.update."""

    def test_updates_specified_fields(self, as_test_org, customer_service):
        from core.models import CustomerCreate, CustomerUpdate

        created = customer_service.create(CustomerCreate(name="Dana", email="dana@test.com", phone="1"))

        updated = customer_service.update(created.id, CustomerUpdate(company="Dana LLC", phone=None))

        assert updated.company == "Dana LLC"
        assert updated.phone is None
        assert updated.name == "Dana"

    def test_null_name_is_ignored(self, as_test_org, customer_service):
        from core.models import CustomerCreate, CustomerUpdate

        created = customer_service.create(CustomerCreate(name="Eve", email="eve@test.com"))

        assert customer_service.update(created.id, CustomerUpdate(name=None)).name == "Eve"

    def test_logs_field_changes(self, db, as_test_org, customer_service):
        from core.models import CustomerCreate, CustomerUpdate

        created = customer_service.create(CustomerCreate(name="Finn", email="finn@test.com"))
        customer_service.update(created.id, CustomerUpdate(name="Finnegan"))

        entries = db.execute(
            "SELECT * FROM audit_log WHERE entity_id = %s AND action = 'update'",
            (created.id,)
        )
        assert len(entries) == 1
        assert entries[0]["changes"]["name"] == {"old": "Finn", "new": "Finnegan"}

    def test_raises_for_nonexistent(self, as_test_org, customer_service):
        from core.exceptions import CustomerNotFound
        from core.models import CustomerUpdate

        with pytest.raises(CustomerNotFound):
            customer_service.update(uuid4(), CustomerUpdate(name="Nobody"))

    def test_clearing_invoice_settings(self, as_test_org, customer_service):
        from core.models import CustomerCreate, CustomerInvoiceSettings

        created = customer_service.create(CustomerCreate(
            name="Acme", email="acme2@test.com",
            invoice_settings=CustomerInvoiceSettings(prefix="ACME"),
        ))

        cleared = customer_service.update_invoice_settings(created.id, None)

        assert cleared.invoice_settings is None


class TestCustomerDelete:
    """Tests for CustomerService.delete."""

    def test_soft_deletes(self, db_admin, as_test_org, customer_service):
        from core.models import CustomerCreate

        created = customer_service.create(CustomerCreate(name="Gil", email="gil@test.com"))

        assert customer_service.delete(created.id) is True

        row = db_admin.execute_single("SELECT is_active FROM customers WHERE id = %s", (created.id,))
        assert row["is_active"] is False

    def test_second_delete_returns_false(self, as_test_org, customer_service):
        from core.models import CustomerCreate

        created = customer_service.create(CustomerCreate(name="Hal", email="hal@test.com"))
        customer_service.delete(created.id)

        assert customer_service.delete(created.id) is False


class TestCustomerList:
    """Tests for CustomerService.list_active."""

    def test_excludes_deleted(self, as_test_org, customer_service):
        from core.models import CustomerCreate

        kept = customer_service.create(CustomerCreate(name="Kept", email="kept@test.com"))
        gone = customer_service.create(CustomerCreate(name="Gone", email="gone2@test.com"))
        customer_service.delete(gone.id)

        assert [c.id for c in customer_service.list_active()] == [kept.id]

    def test_respects_limit_and_offset(self, as_test_org, customer_service):
        from core.models import CustomerCreate

        for i in range(5):
            customer_service.create(CustomerCreate(name=f"C{i}", email=f"c{i}@test.com"))

        first = customer_service.list_active(limit=2)
        second = customer_service.list_active(limit=2, offset=2)

        assert len(first) == 2
        assert len(second) == 2
        assert {c.id for c in first}.isdisjoint({c.id for c in second})

    def test_search_is_case_insensitive(self, as_test_org, customer_service):
        from core.models import CustomerCreate

        customer_service.create(CustomerCreate(name="Ivy", email="ivy@test.com", company="Globex"))
        customer_service.create(CustomerCreate(name="Jon", email="jon@test.com"))

        assert [c.name for c in customer_service.list_active(search="GLOBEX")] == ["Ivy"]
