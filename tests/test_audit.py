"""Tests for the hash-chained Audit Ledger."""

from datetime import datetime

from consequence_kernel.audit.ledger import AuditLedger
from consequence_kernel.models.update import AuditAction, AuditEntry


def _make_entry(consequence_id: str = "csq_1", system: str = "economic") -> AuditEntry:
    return AuditEntry(
        timestamp=datetime.utcnow(),
        consequence_id=consequence_id,
        action=AuditAction.APPLIED,
        system=system,
        change="Updated economic conditions in Village",
        previous_value=75,
        new_value=84,
    )


class TestAuditLedger:
    def setup_method(self):
        self.ledger = AuditLedger(db_path=":memory:")

    def teardown_method(self):
        self.ledger.close()

    def test_append_chains_records(self):
        first = self.ledger.append("upd_1", _make_entry())
        second = self.ledger.append("upd_1", _make_entry("csq_2"))

        assert first.signature != ""
        assert first.prior_record_hash is None
        assert second.prior_record_hash == first.signature
        assert self.ledger.verify_chain_integrity() is True

    def test_append_batch(self):
        records = self.ledger.append_batch("upd_1", [_make_entry("csq_1"), _make_entry("csq_2")])

        assert len(records) == 2
        assert records[1].prior_record_hash == records[0].signature
        assert [r.entry.consequence_id for r in self.ledger.query_by_batch("upd_1")] == ["csq_1", "csq_2"]

    def test_queries(self):
        self.ledger.append("upd_1", _make_entry("csq_1"))
        self.ledger.append("upd_2", _make_entry("csq_1", "relationship"))
        self.ledger.append("upd_2", _make_entry("csq_2"))

        assert [r.entry.system for r in self.ledger.query_by_consequence("csq_1")] == [
            "economic", "relationship",
        ]
        assert self.ledger.query_by_consequence("csq_missing") == []
        recent = self.ledger.query_recent(limit=2)
        assert [r.entry.consequence_id for r in recent] == ["csq_1", "csq_2"]
        assert self.ledger.count() == 3

    def test_tampering_detected(self):
        self.ledger.append("upd_1", _make_entry("csq_1"))
        record = self.ledger.append("upd_1", _make_entry("csq_2"))

        tampered = record.model_copy(deep=True)
        tampered.entry.new_value = 100
        self.ledger._conn.execute(
            "UPDATE audit SET record_json = ? WHERE id = ?",
            (tampered.model_dump_json(), record.id),
        )
        self.ledger._conn.commit()

        assert self.ledger.verify_chain_integrity() is False

    def test_empty_ledger_is_valid(self):
        assert self.ledger.verify_chain_integrity() is True
        assert self.ledger.count() == 0
