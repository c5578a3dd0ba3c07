"""
Workflow engine tests: per-item classification and purchase validation.

Verifies:
- Logistics classifies items as in stock or to be bought
- Administration validates purchases item by item
- Bought goods are received before they can be batched
- Only dispatchable items go into shipment batches
- A mixed requisition ships its stock part while purchasing continues
"""

import pytest

from reqflow.errors import Forbidden, InvalidTransition, ValidationFailed
from reqflow.models import Requisition, RequisitionItem, ShipmentBatch, StatusHistoryEntry
from reqflow.services.notification_service import NotificationType
from reqflow.services.state_graph import Role


def _status(db_session, requisition_id):
    db_session.expire_all()
    return db_session.get(Requisition, requisition_id).status


def _item(db_session, item_id):
    db_session.expire_all()
    return db_session.get(RequisitionItem, item_id)


def _entries(db_session, requisition_id):
    return (
        db_session.query(StatusHistoryEntry)
        .filter_by(requisition_id=requisition_id)
        .order_by(StatusHistoryEntry.id.asc())
        .all()
    )


def _in_stock(item, quantity=None):
    entry = {"item_id": item.id, "classification": "IN_STOCK"}
    if quantity is not None:
        entry["approved_quantity"] = quantity
    return entry


def _to_buy(item, quantity=None):
    entry = {"item_id": item.id, "classification": "PURCHASE_REQUIRED"}
    if quantity is not None:
        entry["approved_quantity"] = quantity
    return entry


# =============================================================================
# CLASSIFICATION
# =============================================================================


class TestClassifyItems:

    def test_all_in_stock_is_ready_to_dispatch(self, engine, actors, make_requisition, db_session, notifier):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None), (2, None)))
        first, second = requisition.items

        result = engine.classify_items(
            requisition.id, actors["logistics"], [_in_stock(first, 4), _in_stock(second)]
        )
        assert result.status == "READY_TO_DISPATCH"
        assert _item(db_session, first.id).status == "READY_TO_DISPATCH"
        assert _item(db_session, first.id).approved_quantity == 4
        assert _item(db_session, second.id).approved_quantity == 2

        [entry] = _entries(db_session, requisition.id)
        assert (entry.previous_status, entry.new_status) == ("LOGISTICS_REVIEW", "READY_TO_DISPATCH")
        assert entry.comment == "Items classified: 2 in stock, 0 require purchase"
        assert notifier.requests[-1].roles == (Role.LOGISTICS,)

    def test_any_purchase_goes_to_purchasing(self, engine, actors, make_requisition, db_session, notifier):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None), (2, None)))
        first, second = requisition.items

        result = engine.classify_items(requisition.id, actors["admin"], [_in_stock(first), _to_buy(second)])
        assert result.status == "PURCHASING"
        assert _item(db_session, first.id).status == "READY_TO_DISPATCH"
        assert _item(db_session, second.id).status == "PENDING_PURCHASE_VALIDATION"

        [pending] = notifier.of_type(NotificationType.APPROVAL_PENDING)
        assert pending.roles == (Role.ADMINISTRATION,)

    def test_partial_classification_keeps_review(self, engine, actors, make_requisition, db_session):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None), (2, None)))
        first, second = requisition.items

        result = engine.classify_items(requisition.id, actors["logistics"], [_to_buy(first)])
        assert result.status == "LOGISTICS_REVIEW"
        [entry] = _entries(db_session, requisition.id)
        assert entry.previous_status == entry.new_status == "LOGISTICS_REVIEW"
        assert entry.comment == "Items classified: 0 in stock, 1 require purchase"

        with pytest.raises(ValidationFailed):
            engine.classify_items(requisition.id, actors["logistics"], [_in_stock(first)])

        engine.classify_items(requisition.id, actors["logistics"], [_in_stock(second)])
        assert _status(db_session, requisition.id) == "PURCHASING"

    @pytest.mark.parametrize("role", ["receiver", "administration", "requester", "security"])
    def test_role_gate(self, engine, actors, make_requisition, role):
        requisition = make_requisition(status="LOGISTICS_REVIEW")
        with pytest.raises(Forbidden):
            engine.classify_items(requisition.id, actors[role], [_in_stock(requisition.items[0])])

    @pytest.mark.parametrize("status", ["SECURITY_REVIEW", "PURCHASING", "READY_TO_DISPATCH"])
    def test_only_during_logistics_review(self, engine, actors, make_requisition, status):
        requisition = make_requisition(status=status)
        with pytest.raises(InvalidTransition):
            engine.classify_items(requisition.id, actors["logistics"], [_in_stock(requisition.items[0])])

    def test_bad_entries(self, engine, actors, make_requisition, db_session):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None),))
        item = requisition.items[0]
        other = make_requisition(status="LOGISTICS_REVIEW").items[0]

        for entries in (
            [],
            "IN_STOCK",
            [{"item_id": item.id, "classification": "LOST"}],
            [_in_stock(item), _to_buy(item)],
            [_in_stock(item, 6)],
            [_in_stock(item, 0)],
            [_in_stock(other)],
        ):
            with pytest.raises(ValidationFailed):
                engine.classify_items(requisition.id, actors["logistics"], entries)

        assert _item(db_session, item.id).status == "PENDING_CLASSIFICATION"
        assert _entries(db_session, requisition.id) == []

    def test_capability_flag(self, engine, actors, make_requisition):
        requisition = make_requisition(status="LOGISTICS_REVIEW")
        assert engine.capabilities(requisition.id, actors["logistics"]).can_classify_items is True
        assert engine.capabilities(requisition.id, actors["administration"]).can_classify_items is False


# =============================================================================
# PURCHASE VALIDATION AND RECEIPT
# =============================================================================


class TestValidatePurchase:

    def _purchasing(self, engine, actors, make_requisition, items=((5, None), (2, None)), stock=1):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=items)
        entries = [
            _in_stock(item) if idx < stock else _to_buy(item)
            for idx, item in enumerate(requisition.items)
        ]
        engine.classify_items(requisition.id, actors["logistics"], entries)
        return requisition

    def test_approve_releases_requisition(self, engine, actors, make_requisition, db_session, notifier, users):
        requisition = self._purchasing(engine, actors, make_requisition)
        bought = requisition.items[1]

        result = engine.validate_purchase(
            requisition.id, actors["administration"],
            [{"item_id": bought.id, "approved": True, "note": " Quote from Acme "}],
        )
        assert result.status == "READY_TO_DISPATCH"

        item = _item(db_session, bought.id)
        assert item.status == "PURCHASE_APPROVED"
        assert item.purchase_note == "Quote from Acme"
        assert item.purchase_validated_by_id == users["administration"].id
        assert item.purchase_validated_at is not None
        assert _entries(db_session, requisition.id)[-1].comment == "Purchase validation: 1 approved, 0 rejected"
        assert notifier.requests[-1].roles == (Role.LOGISTICS,)

    def test_every_purchase_refused(self, engine, actors, make_requisition, db_session, notifier):
        requisition = self._purchasing(engine, actors, make_requisition, items=((3, None),), stock=0)
        item_id = requisition.items[0].id

        result = engine.validate_purchase(
            requisition.id, actors["administration"], [{"item_id": item_id, "approved": False}]
        )
        assert result.status == "REJECTED_BY_ADMINISTRATION"
        assert _item(db_session, item_id).approved_quantity == 0
        assert len(notifier.of_type(NotificationType.REJECTED)) == 1

    def test_refused_purchase_beside_stock_still_ships(self, engine, actors, make_requisition, db_session):
        requisition = self._purchasing(engine, actors, make_requisition)
        stock, bought = requisition.items

        engine.validate_purchase(requisition.id, actors["admin"], [{"item_id": bought.id, "approved": False}])
        assert _status(db_session, requisition.id) == "READY_TO_DISPATCH"

        batch = engine.create_batch(requisition.id, actors["logistics"], [(stock.id, 5)])
        engine.dispatch_batch(batch.id, actors["logistics"])
        engine.confirm_receipt(batch.id, actors["receiver"])
        assert _status(db_session, requisition.id) == "FULLY_DELIVERED"

    def test_undecided_items_keep_purchasing(self, engine, actors, make_requisition, db_session):
        requisition = self._purchasing(engine, actors, make_requisition, stock=0)
        first, second = requisition.items

        result = engine.validate_purchase(
            requisition.id, actors["administration"], [{"item_id": first.id, "approved": True}]
        )
        assert result.status == "PURCHASING"
        last = _entries(db_session, requisition.id)[-1]
        assert last.previous_status == last.new_status == "PURCHASING"

        engine.validate_purchase(requisition.id, actors["administration"], [{"item_id": second.id, "approved": True}])
        assert _status(db_session, requisition.id) == "READY_TO_DISPATCH"

    def test_guards(self, engine, actors, make_requisition):
        requisition = self._purchasing(engine, actors, make_requisition)
        stock, bought = requisition.items

        with pytest.raises(Forbidden):
            engine.validate_purchase(requisition.id, actors["logistics"], [{"item_id": bought.id, "approved": True}])
        with pytest.raises(ValidationFailed):
            engine.validate_purchase(requisition.id, actors["administration"], [{"item_id": stock.id, "approved": True}])
        with pytest.raises(ValidationFailed):
            engine.validate_purchase(requisition.id, actors["administration"], [{"item_id": bought.id, "approved": "yes"}])
        with pytest.raises(ValidationFailed):
            engine.validate_purchase(
                requisition.id, actors["administration"], [{"item_id": bought.id, "approved": True, "note": 7}]
            )

        review = make_requisition(status="LOGISTICS_REVIEW")
        with pytest.raises(InvalidTransition):
            engine.validate_purchase(review.id, actors["administration"], [{"item_id": review.items[0].id, "approved": True}])

    def test_receipt_makes_bought_items_dispatchable(self, engine, actors, make_requisition, db_session):
        requisition = self._purchasing(engine, actors, make_requisition)
        bought = requisition.items[1]
        engine.validate_purchase(requisition.id, actors["administration"], [{"item_id": bought.id, "approved": True}])

        with pytest.raises(ValidationFailed):
            engine.create_batch(requisition.id, actors["logistics"], [(bought.id, 2)])
        with pytest.raises(Forbidden):
            engine.confirm_purchase_received(requisition.id, actors["receiver"], [bought.id])

        [received] = engine.confirm_purchase_received(requisition.id, actors["logistics"], [bought.id])
        assert received.status == "READY_TO_DISPATCH"
        assert received.purchase_received_at is not None
        assert _entries(db_session, requisition.id)[-1].comment == "Purchased items received: 1"

        with pytest.raises(ValidationFailed):
            engine.confirm_purchase_received(requisition.id, actors["logistics"], [bought.id])

        batch = engine.create_batch(requisition.id, actors["logistics"], [(bought.id, 2)])
        assert batch.batch_number == 1

    def test_receipt_needs_dispatch_stage(self, engine, actors, make_requisition):
        requisition = make_requisition(status="LOGISTICS_REVIEW")
        with pytest.raises(InvalidTransition):
            engine.confirm_purchase_received(requisition.id, actors["logistics"], [requisition.items[0].id])


# =============================================================================
# DISPATCHABLE ITEMS
# =============================================================================


class TestDispatchableItems:

    @pytest.mark.parametrize("item_status", ["PENDING_CLASSIFICATION", "PURCHASE_APPROVED", "IN_STOCK", "DISPATCHED"])
    def test_batch_rejects_undispatchable_items(self, engine, actors, make_requisition, db_session, item_status):
        requisition = make_requisition(status="READY_TO_DISPATCH", item_status=item_status)
        with pytest.raises(ValidationFailed):
            engine.create_batch(requisition.id, actors["logistics"], [(requisition.items[0].id, 1)])
        assert db_session.query(ShipmentBatch).count() == 0

    def test_batches_walk_item_to_dispatched(self, engine, actors, make_requisition, db_session):
        requisition = make_requisition(status="READY_TO_DISPATCH", items=((10, 10),))
        item_id = requisition.items[0].id

        engine.create_batch(requisition.id, actors["logistics"], [(item_id, 6)])
        assert _item(db_session, item_id).status == "PARTIALLY_DISPATCHED"

        engine.create_batch(requisition.id, actors["logistics"], [(item_id, 4)])
        assert _item(db_session, item_id).status == "DISPATCHED"

    def test_coarse_process_settles_items(self, engine, actors, make_requisition, db_session):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((3, None),))
        item_id = requisition.items[0].id

        engine.process(requisition.id, actors["logistics"], "PURCHASING")
        assert _item(db_session, item_id).status == "PENDING_PURCHASE_VALIDATION"

        engine.approve(requisition.id, actors["administration"])
        assert _item(db_session, item_id).status == "READY_TO_DISPATCH"

        batch = engine.create_batch(requisition.id, actors["logistics"], [(item_id, 3)])
        assert [line.shipped_quantity for line in batch.lines] == [3]


# =============================================================================
# MIXED REQUISITIONS
# =============================================================================


class TestProcessMixed:

    def test_stock_part_ships_while_purchasing(self, engine, actors, make_requisition, db_session):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None), (2, None)))
        stock, bought = requisition.items

        result, batch = engine.process_mixed(
            requisition.id, actors["logistics"], [_in_stock(stock, 4), _to_buy(bought)], carrier="DHL"
        )
        assert result.status == "PURCHASING"
        assert batch.batch_number == 1
        assert batch.carrier == "DHL"
        assert [(line.requisition_item_id, line.shipped_quantity) for line in batch.lines] == [(stock.id, 4)]
        assert _item(db_session, stock.id).status == "DISPATCHED"
        assert _item(db_session, bought.id).status == "PENDING_PURCHASE_VALIDATION"

    def test_full_mixed_flow(self, engine, actors, make_requisition, db_session):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None), (2, None)))
        stock, bought = requisition.items

        _, first = engine.process_mixed(requisition.id, actors["logistics"], [_in_stock(stock), _to_buy(bought)])
        engine.dispatch_batch(first.id, actors["logistics"])
        engine.confirm_receipt(first.id, actors["receiver"])
        assert _status(db_session, requisition.id) == "PURCHASING"

        engine.validate_purchase(requisition.id, actors["administration"], [{"item_id": bought.id, "approved": True}])
        assert _status(db_session, requisition.id) == "PARTIALLY_DELIVERED"

        engine.confirm_purchase_received(requisition.id, actors["logistics"], [bought.id])
        second = engine.create_batch(requisition.id, actors["logistics"], [(bought.id, 2)])
        engine.dispatch_batch(second.id, actors["logistics"])
        engine.confirm_receipt(second.id, actors["receiver"])
        assert _status(db_session, requisition.id) == "FULLY_DELIVERED"

    def test_needs_both_kinds(self, engine, actors, make_requisition):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None), (2, None)))
        stock, bought = requisition.items
        with pytest.raises(ValidationFailed):
            engine.process_mixed(requisition.id, actors["logistics"], [_in_stock(stock), _in_stock(bought)])

    def test_every_item_must_be_classified(self, engine, actors, make_requisition, db_session):
        requisition = make_requisition(status="LOGISTICS_REVIEW", items=((5, None), (2, None), (1, None)))
        first, second, third = requisition.items

        with pytest.raises(ValidationFailed):
            engine.process_mixed(requisition.id, actors["logistics"], [_in_stock(first), _to_buy(second)])

        assert _status(db_session, requisition.id) == "LOGISTICS_REVIEW"
        assert _item(db_session, first.id).status == "PENDING_CLASSIFICATION"
        assert db_session.query(ShipmentBatch).count() == 0
