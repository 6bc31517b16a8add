"""Tests for the VatReturnEngine lifecycle commands."""

from datetime import date
from decimal import Decimal

import pytest

from vat_engine.config import RateConfig
from vat_engine.engine import VatReturnEngine
from vat_engine.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from vat_engine.models import FilingInfo, ReturnInput, VatReturn, VatStatus


@pytest.fixture
def engine() -> VatReturnEngine:
    return VatReturnEngine(rate_config=RateConfig(Decimal("0.20")))


def _input(
    start: str = "2024-01-01",
    end: str = "2024-01-31",
    taxable: str = "1000.00",
    **amounts: str,
) -> ReturnInput:
    return ReturnInput(
        period_start=date.fromisoformat(start),
        period_end=date.fromisoformat(end),
        taxable_sales=Decimal(taxable),
        **{name: Decimal(value) for name, value in amounts.items()},
    )


def _filed(engine: VatReturnEngine, start: str, end: str) -> VatReturn:
    vr = engine.create_return(_input(start, end))
    return engine.mark_filed(vr.id, FilingInfo(reference=f"REF-{start}"))


# ── Create ──────────────────────────────────────────────────────────


def test_create_returns_draft_with_first_version(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    assert vr.status == VatStatus.DRAFT
    assert vr.revision == 1
    assert len(vr.versions) == 1
    assert [a.type for a in vr.activity] == ["create"]
    assert engine.get_return(vr.id).id == vr.id


def test_output_vat_derived_from_taxable_sales(engine: VatReturnEngine):
    vr = engine.create_return(_input(taxable="1000"))
    assert vr.output_vat == Decimal("200.00")


def test_supplied_output_vat_is_ignored(engine: VatReturnEngine):
    vr = engine.create_return(_input(taxable="1000", output_vat="999"))
    assert vr.output_vat == Decimal("200.00")


def test_output_vat_rounds_half_up(engine: VatReturnEngine):
    # 0.10 * 0.15 = 0.015 -> 0.02
    vr = engine.create_return(_input(taxable="0.10"), vat_rate=Decimal("0.15"))
    assert vr.output_vat == Decimal("0.02")


def test_create_accepts_plain_dict(engine: VatReturnEngine):
    vr = engine.create_return(
        {"period_start": "2024-03-01", "period_end": "2024-03-31", "taxable_sales": "500"}
    )
    assert vr.output_vat == Decimal("100.00")
    assert vr.period.start == date(2024, 3, 1)


def test_create_with_malformed_dict_raises_validation(engine: VatReturnEngine):
    with pytest.raises(ValidationError):
        engine.create_return({"period_start": "not-a-date", "period_end": "2024-03-31"})


def test_create_with_explicit_rate(engine: VatReturnEngine):
    vr = engine.create_return(_input(taxable="1000"), vat_rate=Decimal("0.05"))
    assert vr.output_vat == Decimal("50.00")
    assert vr.vat_rate == Decimal("0.05")


def test_create_with_out_of_range_rate_raises(engine: VatReturnEngine):
    with pytest.raises(ValidationError):
        engine.create_return(_input(), vat_rate=Decimal("1.5"))


# ── Validation ──────────────────────────────────────────────────────


def test_reversed_period_rejected(engine: VatReturnEngine):
    with pytest.raises(ValidationError) as exc:
        engine.create_return(_input("2024-02-01", "2024-01-01"))
    assert "period_start" in exc.value.errors[0]
    assert len(engine.list_returns()) == 0


def test_single_day_period_allowed(engine: VatReturnEngine):
    vr = engine.create_return(_input("2024-01-15", "2024-01-15"))
    assert vr.period.start == vr.period.end


def test_negative_figures_rejected(engine: VatReturnEngine):
    with pytest.raises(ValidationError) as exc:
        engine.create_return(_input(taxable="-1", input_vat="-5"))
    assert "taxable_sales must not be negative" in exc.value.errors
    assert "input_vat must not be negative" in exc.value.errors


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_figures_rejected_on_create(engine: VatReturnEngine, amount: str):
    with pytest.raises(ValidationError) as exc:
        engine.create_return(
            {"period_start": "2024-01-01", "period_end": "2024-01-31", "taxable_sales": amount}
        )
    assert "taxable_sales must be a finite amount" in exc.value.errors
    assert len(engine.list_returns()) == 0


def test_non_finite_adjustments_rejected(engine: VatReturnEngine):
    with pytest.raises(ValidationError) as exc:
        engine.create_return(_input(adjustments="NaN"))
    assert "adjustments must be a finite amount" in exc.value.errors


def test_oversized_figures_rejected_on_create(engine: VatReturnEngine):
    with pytest.raises(ValidationError):
        engine.create_return(
            {"period_start": "2024-01-01", "period_end": "2024-01-31", "taxable_sales": "1e30"}
        )
    assert len(engine.list_returns()) == 0


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "1e30"])
def test_unusable_figures_rejected_on_update(engine: VatReturnEngine, amount: str):
    vr = engine.create_return(_input())
    with pytest.raises(ValidationError):
        engine.update_return(
            vr.id,
            {"period_start": "2024-01-01", "period_end": "2024-01-31", "input_vat": amount},
        )
    stored = engine.get_return(vr.id)
    assert stored.revision == 1
    assert len(stored.versions) == 1


def test_unreadable_rate_on_create_rejected(engine: VatReturnEngine):
    with pytest.raises(ValidationError):
        engine.create_return(_input(), vat_rate="abc")


def test_negative_adjustments_allowed(engine: VatReturnEngine):
    vr = engine.create_return(_input(adjustments="-25"))
    assert vr.adjustments == Decimal("-25.00")


# ── Filed-period overlap ────────────────────────────────────────────


def test_overlap_with_filed_return_rejected(engine: VatReturnEngine):
    filed = _filed(engine, "2024-01-01", "2024-01-31")
    with pytest.raises(OverlapError) as exc:
        engine.create_return(_input("2024-01-15", "2024-02-15"))
    assert exc.value.conflicting_id == filed.id


def test_adjacent_period_accepted(engine: VatReturnEngine):
    _filed(engine, "2024-01-01", "2024-01-31")
    vr = engine.create_return(_input("2024-02-01", "2024-02-28"))
    assert vr.status == VatStatus.DRAFT


def test_shared_boundary_day_is_overlap(engine: VatReturnEngine):
    _filed(engine, "2024-01-01", "2024-01-31")
    with pytest.raises(OverlapError):
        engine.create_return(_input("2024-01-31", "2024-02-10"))


def test_overlapping_drafts_allowed(engine: VatReturnEngine):
    engine.create_return(_input("2024-01-01", "2024-01-31"))
    engine.create_return(_input("2024-01-10", "2024-02-10"))
    assert len(engine.list_returns()) == 2


def test_update_into_filed_period_rejected(engine: VatReturnEngine):
    _filed(engine, "2024-01-01", "2024-01-31")
    draft = engine.create_return(_input("2024-02-01", "2024-02-29"))
    with pytest.raises(OverlapError):
        engine.update_return(draft.id, _input("2024-01-20", "2024-02-29"))
    assert engine.get_return(draft.id).period.start == date(2024, 2, 1)


def test_filing_rechecks_overlap(engine: VatReturnEngine):
    first = engine.create_return(_input("2024-01-01", "2024-01-31"))
    second = engine.create_return(_input("2024-01-15", "2024-02-15"))
    engine.mark_filed(first.id, FilingInfo(reference="A"))
    with pytest.raises(OverlapError):
        engine.mark_filed(second.id, FilingInfo(reference="B"))
    assert engine.get_return(second.id).status == VatStatus.DRAFT


# ── Update and versions ─────────────────────────────────────────────


def test_update_appends_version(engine: VatReturnEngine):
    vr = engine.create_return(_input(taxable="1000"))
    updated = engine.update_return(vr.id, _input(taxable="2000"))
    assert len(updated.versions) == 2
    assert updated.output_vat == Decimal("400.00")
    assert updated.revision == 2
    assert updated.activity[-1].type == "update"


def test_versions_are_never_rewritten(engine: VatReturnEngine):
    vr = engine.create_return(_input(taxable="1000"))
    engine.update_return(vr.id, _input(taxable="2000"))
    engine.update_return(vr.id, _input(taxable="3000"))
    versions = engine.get_return(vr.id).versions
    assert [v.snapshot.taxable_sales for v in versions] == [
        Decimal("1000.00"),
        Decimal("2000.00"),
        Decimal("3000.00"),
    ]


def test_rate_change_only_affects_later_writes(engine: VatReturnEngine):
    vr = engine.create_return(_input(taxable="1000"))
    engine.set_vat_rate(Decimal("0.15"))
    assert engine.get_return(vr.id).output_vat == Decimal("200.00")

    updated = engine.update_return(vr.id, _input(taxable="1000"))
    assert updated.output_vat == Decimal("150.00")
    assert updated.versions[0].snapshot.vat_rate == Decimal("0.20")
    assert updated.versions[0].snapshot.output_vat == Decimal("200.00")
    assert updated.versions[1].snapshot.vat_rate == Decimal("0.15")


@pytest.mark.parametrize("rate", ["abc", "NaN", "1.5"])
def test_set_vat_rate_rejects_unusable_rate(engine: VatReturnEngine, rate: str):
    with pytest.raises(ValidationError):
        engine.set_vat_rate(rate)
    assert engine.vat_rate == Decimal("0.20")


def test_update_unknown_return_raises(engine: VatReturnEngine):
    with pytest.raises(NotFoundError):
        engine.update_return("missing", _input())


def test_update_with_stale_revision_conflicts(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    engine.update_return(vr.id, _input(taxable="1500"), expected_revision=1)
    with pytest.raises(ConflictError) as exc:
        engine.update_return(vr.id, _input(taxable="1800"), expected_revision=1)
    assert exc.value.actual == 2
    assert engine.get_return(vr.id).taxable_sales == Decimal("1500.00")


# ── Status transitions ──────────────────────────────────────────────


def test_mark_ready(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    ready = engine.mark_ready(vr.id)
    assert ready.status == VatStatus.READY
    assert ready.activity[-1].type == "status"
    assert len(ready.versions) == 1


def test_mark_ready_twice_is_noop(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    first = engine.mark_ready(vr.id)
    second = engine.mark_ready(vr.id)
    assert second.revision == first.revision
    assert len(second.activity) == len(first.activity)


def test_mark_filed_from_draft(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    filed = engine.mark_filed(
        vr.id, {"reference": "VAT-2024-01", "filed_by": "j.doe"}
    )
    assert filed.status == VatStatus.FILED
    assert filed.filing.reference == "VAT-2024-01"
    assert filed.filing.filed_by == "j.doe"
    assert filed.filing.filed_at is not None
    assert filed.activity[-1].type == "filed"
    assert "VAT-2024-01" in filed.activity[-1].message


def test_mark_filed_from_ready(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    engine.mark_ready(vr.id)
    filed = engine.mark_filed(vr.id, FilingInfo(reference="R"))
    assert filed.status == VatStatus.FILED


def test_filed_return_is_immutable(engine: VatReturnEngine):
    filed = _filed(engine, "2024-01-01", "2024-01-31")
    with pytest.raises(InvalidTransitionError):
        engine.update_return(filed.id, _input(taxable="5"))
    with pytest.raises(InvalidTransitionError):
        engine.mark_ready(filed.id)
    with pytest.raises(InvalidTransitionError):
        engine.mark_filed(filed.id, FilingInfo(reference="again"))
    with pytest.raises(InvalidTransitionError):
        engine.add_attachment(filed.id, "late.pdf")
    assert engine.get_return(filed.id).revision == filed.revision


def test_mark_ready_unknown_return(engine: VatReturnEngine):
    with pytest.raises(NotFoundError) as exc:
        engine.mark_ready("nope")
    assert exc.value.kind == "Return"


# ── Delete and attachments ──────────────────────────────────────────


def test_delete_draft_releases_claimed_transactions(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    engine.import_transactions([{"date": "2024-01-10", "amount": "100"}])
    engine.auto_reconcile(vr.id)

    released = engine.delete_return(vr.id)
    assert released == 1
    assert vr.id not in engine.returns
    assert all(not t.matched for t in engine.list_transactions())


def test_delete_filed_return_refused(engine: VatReturnEngine):
    filed = _filed(engine, "2024-01-01", "2024-01-31")
    with pytest.raises(InvalidTransitionError):
        engine.delete_return(filed.id)


def test_add_attachment(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    attachment = engine.add_attachment(vr.id, "invoice.pdf", 2048, "application/pdf")
    stored = engine.get_return(vr.id)
    assert stored.attachments == [attachment]
    assert stored.activity[-1].type == "attachment"


# ── Listing ─────────────────────────────────────────────────────────


def test_list_returns_newest_first(engine: VatReturnEngine):
    a = engine.create_return(_input("2024-01-01", "2024-01-31"))
    b = engine.create_return(_input("2024-02-01", "2024-02-29"))
    assert [r.id for r in engine.list_returns()] == [b.id, a.id]


def test_list_returns_filters(engine: VatReturnEngine):
    jan = _filed(engine, "2024-01-01", "2024-01-31")
    feb = engine.create_return(_input("2024-02-01", "2024-02-29"))

    assert [r.id for r in engine.list_returns(status="Filed")] == [jan.id]
    assert [r.id for r in engine.list_returns(status=VatStatus.DRAFT)] == [feb.id]
    assert [r.id for r in engine.list_returns(query="ref-2024")] == [jan.id]
    assert [r.id for r in engine.list_returns(date_from=date(2024, 2, 15))] == [feb.id]
    assert [r.id for r in engine.list_returns(date_to=date(2024, 1, 31))] == [jan.id]


def test_returned_objects_are_copies(engine: VatReturnEngine):
    vr = engine.create_return(_input())
    vr.activity.clear()
    vr.taxable_sales = Decimal("0")
    stored = engine.get_return(vr.id)
    assert len(stored.activity) == 1
    assert stored.taxable_sales == Decimal("1000.00")


# ── Derived amounts ─────────────────────────────────────────────────


def test_net_vat_and_amount_payable(engine: VatReturnEngine):
    vr = engine.create_return(
        _input(
            taxable="1000",
            input_vat="40",
            adjustments="10",
            credits="5",
            penalties="2.50",
        )
    )
    assert vr.net_vat == Decimal("160.00")
    assert vr.amount_payable == Decimal("167.50")
