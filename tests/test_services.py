"""Test dei use case con persistenza (SQLite in memoria)."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from psico import services
from psico.errors import NotFoundError, ValidationError
from psico.models import FeeAdjustment, InflationRecord, PatientStatus, Treatment, TreatmentSession
from psico.seed import seed_base


@pytest.fixture
def treatment_id():
    pid = services.create_patient("Martina López", contact="11 5555-0101", mother_name="Ana Pérez")
    return services.create_treatment(pid, "2023-12-15", 10000)


class TestPatientsAndTreatments:
    def test_create_patient_defaults_active(self):
        services.create_patient("  Tomás García ")
        [p] = services.list_patients_flat()
        assert p["name"] == "Tomás García"
        assert p["status"] == "active"

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            services.create_patient("   ")

    def test_invalid_status_rejected(self):
        with pytest.raises(ValidationError):
            services.create_patient("Tomás", status="archived")

    def test_update_patient(self):
        pid = services.create_patient("Tomás")
        out = services.update_patient(pid, status=PatientStatus.INACTIVE, contact="tomas@example.com")
        assert out["status"] == "inactive"
        assert out["contact"] == "tomas@example.com"

    def test_update_patient_unknown_field(self):
        pid = services.create_patient("Tomás")
        with pytest.raises(ValidationError):
            services.update_patient(pid, created_at="ieri")

    def test_current_fee_defaults_to_initial(self, treatment_id):
        [t] = services.list_treatments_flat()
        assert t["id"] == treatment_id
        assert t["initial_fee"] == 10000.0
        assert t["current_fee"] == 10000.0
        assert t["is_active"] is True

    def test_treatment_for_unknown_patient(self):
        with pytest.raises(NotFoundError):
            services.create_treatment("missing", "2024-01-01", 10000)

    @pytest.mark.parametrize("fee", [0, -1, "x"])
    def test_treatment_requires_positive_fee(self, fee):
        pid = services.create_patient("Tomás")
        with pytest.raises(ValidationError):
            services.create_treatment(pid, "2024-01-01", fee)

    def test_initial_fee_is_immutable(self, treatment_id):
        with pytest.raises(ValidationError):
            services.update_treatment(treatment_id, initial_fee=12000)
        # stesso valore: ammesso
        assert services.update_treatment(treatment_id, initial_fee="10000")["initial_fee"] == 10000.0

    def test_close_treatment(self, treatment_id):
        out = services.close_treatment(treatment_id, "2024-12-20")
        assert out["is_active"] is False
        assert out["end_date"] == date(2024, 12, 20)

    def test_delete_patient_cascades(self, db, treatment_id):
        services.record_session(treatment_id, "2024-01-10")
        services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        pid = services.list_patients_flat()[0]["id"]

        services.delete_patient(pid)

        assert db.scalars(select(Treatment)).all() == []
        assert db.scalars(select(TreatmentSession)).all() == []
        assert db.scalars(select(FeeAdjustment)).all() == []


class TestSessions:
    def test_fee_charged_defaults_to_current_fee(self, treatment_id):
        services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        services.record_session(treatment_id, "2024-03-04", "parent_interview")

        [s] = services.list_sessions_flat(treatment_id)
        assert s["fee_charged"] == 10800.0
        assert s["session_type"] == "parent_interview"
        assert s["is_paid"] is False

    def test_fee_charged_is_a_snapshot(self, treatment_id):
        """Gli aggiustamenti successivi non toccano le prestazioni già registrate."""
        services.record_session(treatment_id, "2024-01-10")
        services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        services.apply_fee_adjustment(treatment_id, 11500, "2024-06-01")

        [s] = services.list_sessions_flat(treatment_id)
        assert s["fee_charged"] == 10000.0

    def test_update_session(self, treatment_id):
        sid = services.record_session(treatment_id, "2024-01-10")

        out = services.update_session(
            sid, session_date="2024-01-12", session_type="parent_orientation", fee_charged="9500", is_paid=True
        )

        assert out["session_date"] == date(2024, 1, 12)
        assert out["session_type"] == "parent_orientation"
        assert out["fee_charged"] == 9500.0
        assert out["is_paid"] is True
        [s] = services.list_sessions_flat(treatment_id)
        assert s == out

    def test_update_session_partial(self, treatment_id):
        sid = services.record_session(treatment_id, "2024-01-10")
        out = services.update_session(sid, is_paid=True)
        assert out["fee_charged"] == 10000.0
        assert out["session_date"] == date(2024, 1, 10)

    def test_update_session_unknown_field(self, treatment_id):
        sid = services.record_session(treatment_id, "2024-01-10")
        with pytest.raises(ValidationError):
            services.update_session(sid, treatment_id="altro")

    @pytest.mark.parametrize("fee", [0, "-100", "x"])
    def test_update_session_requires_positive_fee(self, treatment_id, fee):
        sid = services.record_session(treatment_id, "2024-01-10")
        with pytest.raises(ValidationError):
            services.update_session(sid, fee_charged=fee)
        [s] = services.list_sessions_flat(treatment_id)
        assert s["fee_charged"] == 10000.0

    def test_update_session_bad_type(self, treatment_id):
        sid = services.record_session(treatment_id, "2024-01-10")
        with pytest.raises(ValidationError):
            services.update_session(sid, session_type="group")

    def test_update_unknown_session(self):
        with pytest.raises(NotFoundError):
            services.update_session("missing", is_paid=True)

    def test_toggle_paid(self, treatment_id):
        sid = services.record_session(treatment_id, "2024-01-10")
        assert services.toggle_session_paid(sid) is True
        assert services.toggle_session_paid(sid) is False

    def test_unknown_session_type(self, treatment_id):
        with pytest.raises(ValidationError):
            services.record_session(treatment_id, "2024-01-10", "group")

    def test_delete_unknown_session(self):
        with pytest.raises(NotFoundError):
            services.delete_session("missing")


class TestInflation:
    def test_month_is_normalized(self):
        services.record_inflation("2024-03-17", "4.5")
        [r] = services.list_inflation_flat()
        assert r["month"] == date(2024, 3, 1)
        assert r["percentage"] == 4.5

    def test_duplicate_month_rejected(self, db):
        services.record_inflation("2024-03", 4)
        with pytest.raises(ValidationError):
            services.record_inflation(date(2024, 3, 20), 5)
        assert len(db.scalars(select(InflationRecord)).all()) == 1

    def test_update_to_taken_month_rejected(self):
        services.record_inflation("2024-03", 4)
        rid = services.record_inflation("2024-04", 3)
        with pytest.raises(ValidationError):
            services.update_inflation(rid, month="2024-03")
        assert services.update_inflation(rid, percentage="-0.5")["percentage"] == -0.5

    def test_series(self):
        services.record_inflation("2024-02", 3)
        services.record_inflation("2024-01", 5)
        services.record_inflation("2024-03", "-1")

        series = services.inflation_series()

        assert [r["month"] for r in series] == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]
        assert [r["accumulated"] for r in series] == [5.0, 8.0, 7.0]


class TestFeeLedger:
    def test_apply_scenario(self, db, treatment_id):
        out = services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")

        assert out["current_fee"] == 10800.0
        assert out["current_fee_changed"] is True
        assert out["adjustment"]["previous_fee"] == 10000.0
        assert out["adjustment"]["new_fee"] == 10800.0
        assert out["adjustment"]["adjustment_percentage"] == 8.0

        row = db.scalars(select(FeeAdjustment)).one()
        assert row.adjustment_date == date(2024, 3, 1)
        assert db.get(Treatment, treatment_id).current_fee == Decimal("10800")

    def test_delete_latest_of_two_reverts(self, treatment_id):
        services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        b = services.apply_fee_adjustment(treatment_id, 11500, "2024-06-01")

        out = services.delete_fee_adjustment(b["adjustment"]["id"])

        assert out["current_fee"] == 10800.0
        assert out["removed_adjustment_id"] == b["adjustment"]["id"]
        assert len(services.list_fee_adjustments_flat(treatment_id)) == 1

    def test_delete_single_reverts_to_initial(self, treatment_id):
        a = services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        out = services.delete_fee_adjustment(a["adjustment"]["id"])
        assert out["current_fee"] == 10000.0
        assert services.list_fee_adjustments_flat(treatment_id) == []

    def test_edit_latest_updates_treatment(self, treatment_id):
        services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        b = services.apply_fee_adjustment(treatment_id, 11500, "2024-06-01")

        out = services.edit_fee_adjustment(b["adjustment"]["id"], 11880, "2024-06-03")

        assert out["current_fee"] == 11880.0
        assert out["adjustment"]["adjustment_percentage"] == 10.0
        assert out["adjustment"]["adjustment_date"] == date(2024, 6, 3)

    def test_edit_earlier_keeps_treatment_fee(self, treatment_id):
        a = services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        services.apply_fee_adjustment(treatment_id, 11500, "2024-06-01")

        out = services.edit_fee_adjustment(a["adjustment"]["id"], 11000, "2024-03-01")

        assert out["current_fee"] == 11500.0
        assert out["current_fee_changed"] is False
        assert out["adjustment"]["adjustment_percentage"] == 10.0

    def test_same_day_adjustments_latest_inserted_wins(self, treatment_id):
        services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")
        second = services.apply_fee_adjustment(treatment_id, 11000, "2024-03-01")

        out = services.delete_fee_adjustment(second["adjustment"]["id"])

        assert out["current_fee"] == 10800.0

    def test_validation_error_writes_nothing(self, db, treatment_id):
        with pytest.raises(ValidationError):
            services.apply_fee_adjustment(treatment_id, 0, "2024-03-01")
        assert db.scalars(select(FeeAdjustment)).all() == []
        assert db.get(Treatment, treatment_id).current_fee == Decimal("10000")

    def test_failure_after_writes_rolls_back(self, db, treatment_id, monkeypatch):
        """Se qualcosa fallisce dopo le scritture, né aggiustamento né current_fee restano."""
        def boom(s, change):
            raise RuntimeError("connessione persa")

        monkeypatch.setattr(services, "_change_result", boom)

        with pytest.raises(RuntimeError):
            services.apply_fee_adjustment(treatment_id, 10800, "2024-03-01")

        assert db.scalars(select(FeeAdjustment)).all() == []
        assert db.get(Treatment, treatment_id).current_fee == Decimal("10000")

    def test_unknown_ids(self):
        with pytest.raises(NotFoundError):
            services.apply_fee_adjustment("missing", 10800, "2024-03-01")
        with pytest.raises(NotFoundError):
            services.edit_fee_adjustment("missing", 10800, "2024-03-01")
        with pytest.raises(NotFoundError):
            services.delete_fee_adjustment("missing")


class TestViews:
    def test_suggest_fee_scenario(self, treatment_id):
        services.record_inflation("2024-01", 5)
        services.record_inflation("2024-02", 3)

        sg = services.suggest_fee(treatment_id)

        assert sg["reference_date"] == date(2023, 12, 15)
        assert sg["accumulated_inflation"] == 8.0
        assert sg["suggested_fee"] == 10800.0
        assert sg["status"] == "review"

    def test_suggest_fee_does_not_write(self, db, treatment_id):
        services.record_inflation("2024-01", 5)
        services.suggest_fee(treatment_id)
        assert db.get(Treatment, treatment_id).current_fee == Decimal("10000")
        assert db.scalars(select(FeeAdjustment)).all() == []

    def test_suggest_unknown_treatment(self):
        with pytest.raises(NotFoundError):
            services.suggest_fee("missing")

    def test_pending_and_metrics(self, treatment_id):
        services.record_session(treatment_id, "2024-01-10", is_paid=True)
        services.record_session(treatment_id, "2024-01-17")
        services.record_session(treatment_id, "2024-02-07", fee_charged="9000")

        [group] = services.pending_payments_flat()
        assert group["patient_name"] == "Martina López"
        assert group["total"] == 19000.0
        assert [s["session_date"] for s in group["sessions"]] == [date(2024, 1, 17), date(2024, 2, 7)]

        metrics = services.billing_summary_flat(year=2024, month=1)
        assert metrics["total_sessions"] == 2
        assert metrics["collected"] == 10000.0
        assert metrics["collection_rate"] == 50.0
        assert metrics["by_month"]["2024-01"]["pending"] == 10000.0
        assert metrics["by_month"]["2024-01"]["average"] == 10000.0
        [top] = metrics["top_patients"]
        assert top["patient_name"] == "Martina López"
        assert top["total"] == 20000.0
        assert top["sessions"] == 2
        assert metrics["by_month"]["2024-01"]["pending"] == 10000.0
        assert metrics["by_month"]["2024-01"]["average"] == 10000.0
        [top] = metrics["top_patients"]
        assert top["patient_name"] == "Martina López"
        assert top["total"] == 20000.0
        assert top["sessions"] == 2

    def test_seed_is_idempotent(self, db):
        seed_base()
        seed_base()

        overview = services.fee_overview_flat()
        assert len(overview) == 2
        martina = next(r for r in overview if r["patient_name"] == "Martina López")
        assert martina["current_fee"] == 14000.0
        assert martina["reference_date"] == date(2024, 4, 1)
        assert martina["adjustments_count"] == 1
        assert len(db.scalars(select(InflationRecord)).all()) == 12
