"""
Credit Service Component Tests

Component tests for credit_service with mocked dependencies.

Structure:
- conftest.py: Fixtures and mocks for credit service testing
- test_credit_ledger_component.py: CreditService ledger operations
- test_lifecycle_coordinator_component.py: Entitlement/purchase policy and monthly refresh
- test_credit_event_handlers_component.py: customer.updated handling
- test_credit_routes_component.py: FastAPI routes and status mapping
- test_credit_repository_component.py: Row locking, conflict retry, customer mirror paging

Markers:
- @pytest.mark.component: Component test marker
- @pytest.mark.asyncio: Async test marker

Usage:
    pytest tests/component/credit -v
"""
