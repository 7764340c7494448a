"""
Sale commit and void: financial record first, stock best-effort.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.models import Ingredient, Product, ProductVariant, Sale, SaleItem, StockMovement
from app.services import sales_service, stock_ledger
from app.services.sales_service import AlreadyVoidedError, SaleNotFoundError, StorageError
from app.validation import ValidationError


def _header(dept, **overrides):
    header = {"department_id": dept.id, "payment_method": "cash", "cashier_id": "7", "cashier_name": "Ama"}
    header.update(overrides)
    return header


@pytest.fixture
def per_line_commit(app, monkeypatch):
    monkeypatch.setitem(app.config, "SALE_COMMIT_ATOMIC", False)


class TestCommitScenario:
    def test_product_and_mixture(self, db_session, dept_a, product, oud, rose, stock_of, mixture_item):
        result = sales_service.commit_sale(_header(dept_a), [
            {"product_id": product.id, "quantity": 3},
            mixture_item("Oud", "Rose", container_volume=30),
        ])

        sale = result.sale
        assert sale.status == "completed"
        assert result.warnings == []
        assert stock_of(Product, product.id) == 7
        assert stock_of(Ingredient, oud.id) == Decimal("35")
        assert stock_of(Ingredient, rose.id) == Decimal("35")

        items = db_session.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.id).all()
        assert sale.subtotal_cents == sum(item.subtotal_cents for item in items)
        assert sale.total_cents == sale.subtotal_cents
        # 3 x 1000 catalogue price + default 30ml retail size price
        assert sale.total_cents == 3000 + 2_400_000

    def test_mixture_records_resolved_portions(self, db_session, dept_a, oud, rose, mixture_item):
        result = sales_service.commit_sale(_header(dept_a), [mixture_item("oud", "ROSE", container_volume=30)])

        item = db_session.query(SaleItem).filter_by(sale_id=result.sale.id).one()
        assert item.kind == "mixture"
        assert item.container_cost_cents == 50_000
        assert Decimal(str(item.volume)) == Decimal("30")
        assert item.mixture_json == [
            {"name": "oud", "ingredient_id": oud.id, "volume": "15.0"},
            {"name": "ROSE", "ingredient_id": rose.id, "volume": "15.0"},
        ]

    def test_variant_line(self, db_session, dept_a, variant, stock_of):
        result = sales_service.commit_sale(_header(dept_a), [{"variant_id": variant.id, "quantity": 2}])
        item = result.sale.items[0]
        assert item.unit_price_cents == 2700
        assert item.product_id == variant.product_id
        assert stock_of(ProductVariant, variant.id) == 2
        assert stock_of(Product, variant.product_id) == 20

    def test_service_line_moves_nothing(self, db_session, dept_a):
        result = sales_service.commit_sale(_header(dept_a), [
            {"name": "Gift wrap", "unit_price_cents": 300, "quantity": 2},
        ])
        assert result.sale.total_cents == 600
        assert db_session.query(StockMovement).count() == 0


class TestTotals:
    def test_discount_and_change(self, db_session, dept_a, product):
        result = sales_service.commit_sale(
            _header(dept_a, discount_cents=500, amount_paid_cents=3000),
            [{"product_id": product.id, "quantity": 2}],
        )
        sale = result.sale
        assert (sale.subtotal_cents, sale.discount_cents, sale.total_cents) == (2000, 500, 1500)
        assert sale.amount_paid_cents == 3000
        assert sale.change_cents == 1500

    def test_amount_paid_defaults_to_total(self, db_session, dept_a, product):
        sale = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id}]).sale
        assert sale.amount_paid_cents == sale.total_cents
        assert sale.change_cents == 0

    def test_discount_over_subtotal_rejected(self, db_session, dept_a, product):
        with pytest.raises(ValidationError):
            sales_service.commit_sale(_header(dept_a, discount_cents=5000), [{"product_id": product.id}])
        assert db_session.query(Sale).count() == 0

    def test_underpayment_allowed_on_credit_only(self, db_session, dept_a, product):
        with pytest.raises(ValidationError):
            sales_service.commit_sale(_header(dept_a, amount_paid_cents=1), [{"product_id": product.id}])

        sale = sales_service.commit_sale(
            _header(dept_a, payment_method="credit", amount_paid_cents=0),
            [{"product_id": product.id}],
        ).sale
        assert sale.amount_paid_cents == 0
        assert sale.change_cents == 0


class TestNumbering:
    def test_sequential_receipts(self, db_session, dept_a, product):
        first = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id}]).sale
        second = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id}]).sale
        assert first.receipt_number == "RCP-000001"
        assert second.receipt_number == "RCP-000002"
        assert first.invoice_number is None
        assert first.is_invoice is False

    def test_wholesale_gets_invoice(self, db_session, dept_a, oud, mixture_item):
        sale = sales_service.commit_sale(
            _header(dept_a), [mixture_item("Oud", container_volume=30, tier="wholesale")],
        ).sale
        assert sale.is_invoice is True
        assert sale.invoice_number == "INV-000001"
        # wholesale: 30ml x default 40000/ml, no fixed size table
        assert sale.total_cents == 1_200_000


class TestValidation:
    def test_unknown_department(self, db_session, product):
        with pytest.raises(ValidationError):
            sales_service.commit_sale({"department_id": 999}, [{"product_id": product.id}])

    def test_empty_cart(self, db_session, dept_a):
        with pytest.raises(ValidationError):
            sales_service.commit_sale(_header(dept_a), [])

    def test_too_many_ingredients(self, db_session, dept_a, mixture_item):
        names = [f"Oil {i}" for i in range(11)]
        with pytest.raises(ValidationError) as exc:
            sales_service.commit_sale(_header(dept_a), [mixture_item(*names)])
        assert exc.value.details["index"] == 0
        assert db_session.query(Sale).count() == 0

    def test_volume_product_requires_volume(self, db_session, dept_a, volume_product):
        with pytest.raises(ValidationError):
            sales_service.commit_sale(_header(dept_a), [{"product_id": volume_product.id}])

    def test_unknown_payment_method(self, db_session, dept_a, product):
        with pytest.raises(ValidationError):
            sales_service.commit_sale(_header(dept_a, payment_method="barter"), [{"product_id": product.id}])

    def test_missing_product_without_price(self, db_session, dept_a):
        with pytest.raises(ValidationError):
            sales_service.commit_sale(_header(dept_a), [{"product_id": 4040}])


class TestPartialFailure:
    def test_missing_product_with_price_still_sells(self, db_session, dept_a, product, stock_of):
        result = sales_service.commit_sale(_header(dept_a), [
            {"product_id": 4040, "name": "Discontinued", "unit_price_cents": 100},
            {"product_id": product.id, "quantity": 1},
        ])
        assert result.sale.status == "completed"
        assert [w["code"] for w in result.warnings] == ["stock_not_found"]
        assert result.warnings[0]["line"] == 0
        assert stock_of(Product, product.id) == 9

    def test_unresolved_ingredient_is_a_warning(self, db_session, dept_a, oud, stock_of, mixture_item):
        result = sales_service.commit_sale(_header(dept_a), [mixture_item("Oud", "Ghost Orchid")])
        assert result.sale.status == "completed"
        assert [w["code"] for w in result.warnings] == ["ingredient_unresolved"]
        assert stock_of(Ingredient, oud.id) == Decimal("35")

    def test_clamp_is_reported(self, db_session, dept_a, product, stock_of):
        result = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id, "quantity": 12}])
        assert stock_of(Product, product.id) == 0
        assert [w["code"] for w in result.warnings] == ["stock_clamped"]

    def test_ingredient_from_other_department_untouched(
        self, db_session, dept_a, oud_b, stock_of, mixture_item,
    ):
        result = sales_service.commit_sale(_header(dept_a), [mixture_item("Oud", ids=[oud_b.id])])
        assert stock_of(Ingredient, oud_b.id) == Decimal("80")
        assert [w["code"] for w in result.warnings] == ["ingredient_unresolved"]


class TestCommitModes:
    def test_atomic_storage_failure_writes_nothing(self, db_session, dept_a, product, monkeypatch):
        def boom(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(stock_ledger, "deduct", boom)
        with pytest.raises(StorageError):
            sales_service.commit_sale(_header(dept_a), [{"product_id": product.id}])

        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0

    def test_per_line_storage_failure_keeps_sale(
        self, db_session, dept_a, product, oud, stock_of, mixture_item, monkeypatch, per_line_commit,
    ):
        real_deduct = stock_ledger.deduct

        def flaky(line, *args, **kwargs):
            if line.kind == "product":
                raise SQLAlchemyError("lock timeout")
            return real_deduct(line, *args, **kwargs)

        monkeypatch.setattr(stock_ledger, "deduct", flaky)
        result = sales_service.commit_sale(_header(dept_a), [
            {"product_id": product.id, "quantity": 2},
            mixture_item("Oud", container_volume=10),
        ])

        assert db_session.query(Sale).count() == 1
        assert [w["code"] for w in result.warnings] == ["storage_error"]
        assert stock_of(Product, product.id) == 10
        assert stock_of(Ingredient, oud.id) == Decimal("40")

    def test_per_line_happy_path(self, db_session, dept_a, product, stock_of, per_line_commit):
        result = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id, "quantity": 4}])
        assert result.warnings == []
        assert stock_of(Product, product.id) == 6


class TestVoid:
    def _scenario_sale(self, dept, product, mixture_item):
        return sales_service.commit_sale(_header(dept), [
            {"product_id": product.id, "quantity": 3},
            mixture_item("Oud", "Rose", container_volume=30),
        ]).sale

    def test_void_without_mixture_restore(self, db_session, dept_a, product, oud, rose, stock_of, mixture_item):
        sale = self._scenario_sale(dept_a, product, mixture_item)
        total = sale.total_cents

        result = sales_service.void_sale(sale.id, reason="Customer changed mind", actor_id=42)

        assert result.sale.status == "voided"
        assert result.sale.total_cents == total
        assert result.sale.void_reason == "Customer changed mind"
        assert result.sale.voided_by == "42"
        assert result.sale.voided_at is not None
        assert stock_of(Product, product.id) == 10
        assert stock_of(Ingredient, oud.id) == Decimal("35")
        assert stock_of(Ingredient, rose.id) == Decimal("35")

        shrinkage = db_session.query(StockMovement).filter_by(movement_type="VOID_SHRINKAGE").all()
        assert sorted(row.entity_id for row in shrinkage) == sorted([oud.id, rose.id])

    def test_void_with_mixture_restore(self, db_session, dept_a, product, oud, rose, stock_of, mixture_item):
        sale = self._scenario_sale(dept_a, product, mixture_item)
        sales_service.void_sale(sale.id, reason="Wrong blend", restore_mixtures=True)

        assert stock_of(Ingredient, oud.id) == Decimal("50")
        assert stock_of(Ingredient, rose.id) == Decimal("50")

    def test_config_default_restores_mixtures(
        self, app, db_session, dept_a, oud, stock_of, mixture_item, monkeypatch,
    ):
        monkeypatch.setitem(app.config, "VOID_RESTORES_MIXTURES", True)
        sale = sales_service.commit_sale(_header(dept_a), [mixture_item("Oud", container_volume=20)]).sale
        sales_service.void_sale(sale.id, reason="Spilled at counter")
        assert stock_of(Ingredient, oud.id) == Decimal("50")

    def test_second_void_rejected_and_stock_unchanged(
        self, db_session, dept_a, product, oud, rose, stock_of, mixture_item,
    ):
        sale = self._scenario_sale(dept_a, product, mixture_item)
        sales_service.void_sale(sale.id, reason="Duplicate")

        with pytest.raises(AlreadyVoidedError):
            sales_service.void_sale(sale.id, reason="Duplicate again", restore_mixtures=True)

        assert stock_of(Product, product.id) == 10
        assert stock_of(Ingredient, oud.id) == Decimal("35")
        assert db_session.get(Sale, sale.id).void_reason == "Duplicate"

    def test_void_restores_clamped_request_amount(self, db_session, dept_a, product, stock_of):
        # Restoration credits what the line recorded, not what the clamp applied
        sale = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id, "quantity": 12}]).sale
        sales_service.void_sale(sale.id, reason="Miskey")
        assert stock_of(Product, product.id) == 12

    def test_void_variant_and_volume_product(self, db_session, dept_a, variant, volume_product, stock_of):
        sale = sales_service.commit_sale(_header(dept_a), [
            {"variant_id": variant.id, "quantity": 1},
            {"product_id": volume_product.id, "volume": "75.5"},
        ]).sale
        assert stock_of(Product, volume_product.id) == Decimal("424.5")

        sales_service.void_sale(sale.id, reason="Return")
        assert stock_of(ProductVariant, variant.id) == 4
        assert stock_of(Product, volume_product.id) == Decimal("500")

    def test_void_never_deletes(self, db_session, dept_a, product):
        sale = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id}]).sale
        sales_service.void_sale(sale.id, reason="Test")
        assert db_session.query(Sale).count() == 1
        assert db_session.query(SaleItem).count() == 1

    def test_reason_required(self, db_session, dept_a, product):
        sale = sales_service.commit_sale(_header(dept_a), [{"product_id": product.id}]).sale
        with pytest.raises(ValidationError):
            sales_service.void_sale(sale.id, reason="   ")
        assert db_session.get(Sale, sale.id).status == "completed"

    def test_unknown_sale(self, db_session):
        with pytest.raises(SaleNotFoundError):
            sales_service.void_sale(123456, reason="?")

    def test_deleted_product_is_a_warning(self, db_session, dept_a, product):
        sale = sales_service.commit_sale(
            _header(dept_a), [{"name": "Manual", "product_id": 5050, "unit_price_cents": 100}],
        ).sale
        result = sales_service.void_sale(sale.id, reason="Test")
        assert result.sale.status == "voided"
        assert [w["code"] for w in result.warnings] == ["stock_not_found"]

    @pytest.mark.parametrize("restore_mixtures", [True, False])
    def test_unresolved_portion_not_credited_on_void(
        self, db_session, dept_a, oud, stock_of, mixture_item, restore_mixtures,
    ):
        result = sales_service.commit_sale(_header(dept_a), [mixture_item("Oud", "Ghost Orchid", container_volume=30)])
        assert [w["code"] for w in result.warnings] == ["ingredient_unresolved"]
        assert stock_of(Ingredient, oud.id) == Decimal("35")

        # Stocked after the sale: it never gave anything to this blend
        ghost = Ingredient(department_id=dept_a.id, name="Ghost Orchid", stock_volume=Decimal("40"))
        db_session.add(ghost)
        db_session.commit()

        voided = sales_service.void_sale(result.sale.id, reason="Wrong blend", restore_mixtures=restore_mixtures)

        assert stock_of(Ingredient, ghost.id) == Decimal("40")
        assert stock_of(Ingredient, oud.id) == (Decimal("50") if restore_mixtures else Decimal("35"))
        assert [w["code"] for w in voided.warnings] == ["ingredient_unresolved"]
        touched = db_session.query(StockMovement).filter_by(entity_type="ingredient", entity_id=ghost.id).count()
        assert touched == 0

    @pytest.mark.parametrize("restore_mixtures", [True, False])
    def test_stale_ingredient_id_not_re_resolved_on_void(
        self, db_session, dept_a, oud, rose, stock_of, mixture_item, restore_mixtures,
    ):
        sale = sales_service.commit_sale(_header(dept_a), [mixture_item("Oud", "Rose", container_volume=30)]).sale
        db_session.delete(oud)
        db_session.commit()

        # Same name, new row: the void must not credit it
        new_oud = Ingredient(department_id=dept_a.id, name="Oud", stock_volume=Decimal("10"))
        db_session.add(new_oud)
        db_session.commit()

        voided = sales_service.void_sale(sale.id, reason="Stale", restore_mixtures=restore_mixtures)

        assert voided.sale.status == "voided"
        assert stock_of(Ingredient, new_oud.id) == Decimal("10")
        assert stock_of(Ingredient, rose.id) == (Decimal("50") if restore_mixtures else Decimal("35"))
        assert [w["code"] for w in voided.warnings] == ["stock_not_found"]

    def test_line_that_failed_to_deduct_is_not_restored(
        self, db_session, dept_a, product, oud, stock_of, mixture_item, per_line_commit, monkeypatch,
    ):
        real_deduct = stock_ledger.deduct

        def flaky(line, *args, **kwargs):
            if line.kind == "product":
                raise SQLAlchemyError("lock timeout")
            return real_deduct(line, *args, **kwargs)

        monkeypatch.setattr(stock_ledger, "deduct", flaky)
        sale = sales_service.commit_sale(_header(dept_a), [
            {"product_id": product.id, "quantity": 2},
            mixture_item("Oud", container_volume=10),
        ]).sale
        monkeypatch.setattr(stock_ledger, "deduct", real_deduct)

        voided = sales_service.void_sale(sale.id, reason="Test", restore_mixtures=True)

        assert stock_of(Product, product.id) == 10
        assert stock_of(Ingredient, oud.id) == Decimal("50")
        assert [w["code"] for w in voided.warnings] == ["stock_not_found"]
