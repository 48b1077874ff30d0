"""
Tests for SequenceService (locked counter sequences).

Validates:
- First allocation creates the counter at 1
- Strict monotonicity per sequence name
- Independent sequences per name (audit vs per-company operation numbers)
- Rollback returns the allocated value
"""

from uuid import uuid4

from factor_kernel.services.sequence_service import SequenceCounter, SequenceService


class TestSequenceAllocation:
    """next_value / current_value behaviour."""

    def test_first_value_is_one(self, session):
        seq = SequenceService(session)
        assert seq.next_value("things") == 1

    def test_values_strictly_increase(self, session):
        seq = SequenceService(session)
        values = [seq.next_value("things") for _ in range(5)]
        assert values == [1, 2, 3, 4, 5]

    def test_names_are_independent(self, session):
        seq = SequenceService(session)
        seq.next_value("a")
        seq.next_value("a")
        assert seq.next_value("b") == 1
        assert seq.current_value("a") == 2

    def test_current_value_unknown_sequence(self, session):
        assert SequenceService(session).current_value("missing") is None

    def test_rollback_returns_value(self, session):
        seq = SequenceService(session)
        seq.next_value("rolled")
        session.commit()
        seq.next_value("rolled")
        session.rollback()
        assert seq.next_value("rolled") == 2

    def test_single_counter_row_per_name(self, session):
        seq = SequenceService(session)
        for _ in range(3):
            seq.next_value("rows")
        session.flush()
        rows = session.query(SequenceCounter).filter_by(name="rows").all()
        assert len(rows) == 1
        assert rows[0].current_value == 3


class TestOperationSequenceName:
    """Per-company operation numbering."""

    def test_name_contains_company(self):
        company_id = uuid4()
        assert SequenceService.operation_sequence_name(company_id) == (
            f"factor_operation:{company_id}"
        )

    def test_companies_number_independently(self, session):
        seq = SequenceService(session)
        a = SequenceService.operation_sequence_name(uuid4())
        b = SequenceService.operation_sequence_name(uuid4())
        assert seq.next_value(a) == 1
        assert seq.next_value(a) == 2
        assert seq.next_value(b) == 1
