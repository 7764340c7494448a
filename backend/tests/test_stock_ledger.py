"""
Stock ledger: clamp-at-zero deductions, exact restores, per-portion mixture moves.
"""

from decimal import Decimal

import pytest

from app.line_items import IngredientPortion, MixtureLine, ProductLine, ServiceLine, VariantLine
from app.models import Ingredient, Product, ProductVariant, StockMovement
from app.services import stock_ledger
from app.services.stock_ledger import StockChange, StockNotFoundError


def _taken_from_product(product_id, qty):
    return StockChange(
        entity_type="product", entity_id=product_id, requested=Decimal(-qty),
        applied_delta=Decimal(-qty), stock_before=Decimal(0), stock_after=Decimal(0),
    )


def _mixture(*portions, quantity=1):
    return MixtureLine(
        name="Blend",
        quantity=quantity,
        unit_price_cents=1000,
        container_volume=Decimal("30"),
        customer_tier="retail",
        container_cost_cents=500,
        portions=tuple(portions),
    )


class TestProduct:
    def test_deduct_and_restore_round_trip(self, db_session, dept_a, product, stock_of):
        line = ProductLine(name="Gift Box", quantity=3, unit_price_cents=1000, product_id=product.id)

        outcome = stock_ledger.deduct(line, dept_a.id)
        db_session.commit()
        assert stock_of(Product, product.id) == 7
        assert outcome.changes[0].clamped is False

        stock_ledger.restore(line, outcome.changes)
        db_session.commit()
        assert stock_of(Product, product.id) == 10

    def test_deduct_clamps_at_zero(self, db_session, dept_a, product, stock_of):
        line = ProductLine(name="Gift Box", quantity=25, unit_price_cents=1000, product_id=product.id)

        outcome = stock_ledger.deduct(line, dept_a.id)
        db_session.commit()

        change = outcome.changes[0]
        assert stock_of(Product, product.id) == 0
        assert change.clamped is True
        assert change.applied_delta == Decimal("-10")
        assert change.requested == Decimal("-25")

    @pytest.mark.parametrize("sequence", [
        [("deduct", 4), ("deduct", 9), ("restore", 2), ("deduct", 1)],
        [("deduct", 100), ("deduct", 100), ("restore", 1)],
        [("restore", 3), ("deduct", 13), ("deduct", 1)],
    ])
    def test_never_negative_for_any_sequence(self, db_session, dept_a, product, stock_of, sequence):
        expected = 10
        for direction, qty in sequence:
            line = ProductLine(name="Gift Box", quantity=qty, unit_price_cents=1, product_id=product.id)
            if direction == "deduct":
                stock_ledger.deduct(line, dept_a.id)
            else:
                stock_ledger.restore(line, [_taken_from_product(product.id, qty)])
            db_session.commit()
            expected = max(0, expected - qty) if direction == "deduct" else expected + qty
            assert stock_of(Product, product.id) == expected
            assert stock_of(Product, product.id) >= 0

    def test_volume_tracked_writes_volume_only(self, db_session, dept_a, volume_product, stock_of):
        line = ProductLine(
            name="Body Oil", quantity=1, unit_price_cents=5000,
            product_id=volume_product.id, volume=Decimal("120.5"),
        )
        stock_ledger.deduct(line, dept_a.id)
        db_session.commit()

        db_session.expire_all()
        row = db_session.get(Product, volume_product.id)
        assert Decimal(str(row.stock_volume)) == Decimal("379.5")
        assert row.stock == 0

    def test_volume_tracked_without_volume(self, db_session, dept_a, volume_product):
        line = ProductLine(name="Body Oil", quantity=1, unit_price_cents=5000, product_id=volume_product.id)
        with pytest.raises(StockNotFoundError):
            stock_ledger.deduct(line, dept_a.id)

    def test_missing_product(self, db_session, dept_a):
        line = ProductLine(name="Ghost", quantity=1, unit_price_cents=1, product_id=9999)
        with pytest.raises(StockNotFoundError) as exc:
            stock_ledger.deduct(line, dept_a.id)
        assert exc.value.details == {"product_id": 9999}


class TestVariant:
    def test_variant_stock_only(self, db_session, dept_a, variant, stock_of):
        line = VariantLine(name="T-Shirt L", quantity=3, unit_price_cents=2700, variant_id=variant.id)

        outcome = stock_ledger.deduct(line, dept_a.id)
        db_session.commit()
        assert stock_of(ProductVariant, variant.id) == 1
        assert stock_of(Product, variant.product_id) == 20

        stock_ledger.restore(line, outcome.changes)
        db_session.commit()
        assert stock_of(ProductVariant, variant.id) == 4

    def test_variant_clamps(self, db_session, dept_a, variant, stock_of):
        line = VariantLine(name="T-Shirt L", quantity=9, unit_price_cents=2700, variant_id=variant.id)
        stock_ledger.deduct(line, dept_a.id)
        db_session.commit()
        assert stock_of(ProductVariant, variant.id) == 0

    def test_missing_variant(self, db_session, dept_a):
        line = VariantLine(name="Ghost", quantity=1, unit_price_cents=1, variant_id=777)
        with pytest.raises(StockNotFoundError):
            stock_ledger.deduct(line, dept_a.id)


class TestMixture:
    def test_each_portion_moves(self, db_session, dept_a, oud, rose, stock_of):
        line = _mixture(
            IngredientPortion(name="Oud", volume=Decimal("15.0"), ingredient_id=oud.id),
            IngredientPortion(name="Rose", volume=Decimal("15.0"), ingredient_id=rose.id),
        )
        outcome = stock_ledger.deduct(line, dept_a.id)
        db_session.commit()

        assert len(outcome.changes) == 2
        assert outcome.warnings == []
        assert stock_of(Ingredient, oud.id) == Decimal("35")
        assert stock_of(Ingredient, rose.id) == Decimal("35")

    def test_quantity_multiplies_portions(self, db_session, dept_a, oud, stock_of):
        line = _mixture(IngredientPortion(name="Oud", volume=Decimal("10.0"), ingredient_id=oud.id), quantity=2)
        stock_ledger.deduct(line, dept_a.id)
        db_session.commit()
        assert stock_of(Ingredient, oud.id) == Decimal("30")

    def test_unresolved_portion_is_skipped(self, db_session, dept_a, oud, stock_of):
        line = _mixture(
            IngredientPortion(name="Unobtainium", volume=Decimal("15.0")),
            IngredientPortion(name="Oud", volume=Decimal("15.0")),
        )
        outcome = stock_ledger.deduct(line, dept_a.id)
        db_session.commit()

        assert [w["code"] for w in outcome.warnings] == ["ingredient_unresolved"]
        assert outcome.warnings[0]["ingredient"] == "Unobtainium"
        assert stock_of(Ingredient, oud.id) == Decimal("35")

    def test_stale_id_resolves_by_name_in_department(self, db_session, dept_a, oud, oud_b, stock_of):
        # id points at department B's Oud; department A's must be the one deducted
        line = _mixture(IngredientPortion(name="Oud", volume=Decimal("15.0"), ingredient_id=oud_b.id))
        stock_ledger.deduct(line, dept_a.id)
        db_session.commit()

        assert stock_of(Ingredient, oud.id) == Decimal("35")
        assert stock_of(Ingredient, oud_b.id) == Decimal("80")

    def test_invalid_department_moves_nothing(self, db_session, oud, stock_of):
        line = _mixture(IngredientPortion(name="Oud", volume=Decimal("15.0")))
        outcome = stock_ledger.deduct(line, None)
        db_session.commit()

        assert outcome.changes == []
        assert len(outcome.warnings) == 1
        assert stock_of(Ingredient, oud.id) == Decimal("50")

    def test_ingredient_clamps(self, db_session, dept_a, oud, stock_of):
        line = _mixture(IngredientPortion(name="Oud", volume=Decimal("80.0"), ingredient_id=oud.id))
        outcome = stock_ledger.deduct(line, dept_a.id)
        db_session.commit()
        assert outcome.changes[0].clamped
        assert stock_of(Ingredient, oud.id) == Decimal("0")


class TestAudit:
    def test_movement_row_per_mutation(self, db_session, dept_a, product, oud):
        stock_ledger.deduct(
            ProductLine(name="Gift Box", quantity=12, unit_price_cents=1, product_id=product.id),
            dept_a.id, sale_id=None, sale_item_id=None,
        )
        stock_ledger.deduct(
            _mixture(IngredientPortion(name="Oud", volume=Decimal("5.0"), ingredient_id=oud.id)),
            dept_a.id,
        )
        db_session.commit()

        rows = db_session.query(StockMovement).order_by(StockMovement.id).all()
        assert [(r.entity_type, r.movement_type) for r in rows] == [
            ("product", "SALE"),
            ("ingredient", "SALE"),
        ]
        assert Decimal(str(rows[0].requested)) == Decimal("-12")
        assert Decimal(str(rows[0].applied_delta)) == Decimal("-10")
        assert Decimal(str(rows[0].stock_after)) == Decimal("0")

    def test_shrinkage_leaves_stock(self, db_session, dept_a, oud, stock_of):
        line = _mixture(IngredientPortion(name="Oud", volume=Decimal("15.0"), ingredient_id=oud.id))
        taken = stock_ledger.deduct(line, dept_a.id).changes
        outcome = stock_ledger.record_shrinkage(line, taken)
        db_session.commit()

        assert stock_of(Ingredient, oud.id) == Decimal("35")
        row = db_session.query(StockMovement).filter_by(movement_type="VOID_SHRINKAGE").one()
        assert Decimal(str(row.applied_delta)) == Decimal("0")
        assert Decimal(str(row.requested)) == Decimal("15")
        assert outcome.changes[0].applied_delta == Decimal("0")

    def test_movement_records_stock_field(self, db_session, dept_a, product, volume_product):
        stock_ledger.deduct(ProductLine(name="Box", quantity=1, unit_price_cents=1, product_id=product.id), dept_a.id)
        stock_ledger.deduct(
            ProductLine(name="Oil", quantity=1, unit_price_cents=1, product_id=volume_product.id, volume=Decimal("5")),
            dept_a.id,
        )
        db_session.commit()

        rows = db_session.query(StockMovement).order_by(StockMovement.id).all()
        assert [r.stock_field for r in rows] == ["stock", "stock_volume"]


class TestRestore:
    def test_portion_never_deducted_is_not_credited(self, db_session, dept_a, oud, stock_of):
        line = _mixture(
            IngredientPortion(name="Oud", volume=Decimal("15.0"), ingredient_id=oud.id),
            IngredientPortion(name="Ghost Orchid", volume=Decimal("15.0")),
        )
        taken = stock_ledger.deduct(line, dept_a.id).changes
        db_session.commit()

        ghost = Ingredient(department_id=dept_a.id, name="Ghost Orchid", stock_volume=Decimal("40"))
        db_session.add(ghost)
        db_session.commit()

        outcome = stock_ledger.restore(line, taken)
        db_session.commit()

        assert stock_of(Ingredient, oud.id) == Decimal("50")
        assert stock_of(Ingredient, ghost.id) == Decimal("40")
        assert [w["code"] for w in outcome.warnings] == ["ingredient_unresolved"]
        assert outcome.warnings[0]["ingredient"] == "Ghost Orchid"

    def test_deleted_row_is_a_warning(self, db_session, dept_a, oud, rose, stock_of):
        line = _mixture(
            IngredientPortion(name="Oud", volume=Decimal("15.0"), ingredient_id=oud.id),
            IngredientPortion(name="Rose", volume=Decimal("15.0"), ingredient_id=rose.id),
        )
        taken = stock_ledger.deduct(line, dept_a.id).changes
        db_session.commit()
        db_session.delete(rose)
        db_session.commit()

        outcome = stock_ledger.restore(line, taken)
        db_session.commit()

        assert stock_of(Ingredient, oud.id) == Decimal("50")
        assert [w["code"] for w in outcome.warnings] == ["stock_not_found"]

    def test_product_line_without_deduction(self, db_session, dept_a, product, stock_of):
        line = ProductLine(name="Gift Box", quantity=2, unit_price_cents=1000, product_id=product.id)
        outcome = stock_ledger.restore(line, [])
        db_session.commit()

        assert stock_of(Product, product.id) == 10
        assert outcome.warnings[0]["code"] == "stock_not_found"
        assert outcome.warnings[0]["product_id"] == product.id


def test_service_line_is_a_no_op(db_session, dept_a):
    outcome = stock_ledger.deduct(ServiceLine(name="Engraving", quantity=1, unit_price_cents=500), dept_a.id)
    assert outcome.changes == []
    assert outcome.warnings == []
    assert db_session.query(StockMovement).count() == 0
