"""Unit tests for UnitOfWork: business rows and events commit together."""
from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from commerce_outbox.core.events.base import DomainEvent
from commerce_outbox.core.exceptions import EventSerializationError
from commerce_outbox.infra.database.unit_of_work import UnitOfWork
from commerce_outbox.infra.events.outbox.models import EventOutbox
from tests.utils import Order, OrderPlaced, fetch_outbox, make_order


class Flagged(DomainEvent):
    event_type = "test.flagged"

    order_id: str


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


class TestCommit:
    """Tests for the atomic append."""

    async def test_commit_writes_order_and_events(self, session_factory):
        order = make_order()

        async with UnitOfWork(session_factory, notify_processor=False) as uow:
            uow.add(order)
            placed = order.place(total_cents=4999)
            shipped = order.ship(carrier="ups")

        records = await fetch_outbox(session_factory)
        assert await _count(session_factory, Order) == 1
        assert [r.event_type for r in records] == ["order.placed", "order.shipped"]
        assert [r.sequence for r in records] == [0, 1]
        assert json.loads(records[0].payload)["event_id"] == placed.event_id
        assert json.loads(records[1].payload)["event_id"] == shipped.event_id
        assert all(r.aggregate_type == "Order" for r in records)
        assert all(r.aggregate_id == str(order.id) for r in records)
        assert all(r.processed_at is None and r.retry_count == 0 for r in records)

    async def test_buffer_is_cleared_after_commit(self, session_factory):
        order = make_order()

        async with UnitOfWork(session_factory, notify_processor=False) as uow:
            uow.add(order)
            order.place(total_cents=100)

        assert order.domain_events == ()

    async def test_sequence_follows_raise_order_across_aggregates(self, session_factory):
        added_first, added_second = make_order("cust-1"), make_order("cust-2")

        async with UnitOfWork(session_factory, notify_processor=False) as uow:
            uow.add(added_first)
            uow.add(added_second)
            placed = added_second.place(total_cents=100)
            shipped = added_first.ship(carrier="ups")
            placed_again = added_first.place(total_cents=200)

        records = await fetch_outbox(session_factory)
        assert [json.loads(r.payload)["event_id"] for r in records] == [
            placed.event_id,
            shipped.event_id,
            placed_again.event_id,
        ]
        assert [r.sequence for r in records] == [0, 1, 2]

    async def test_correlation_id_is_applied(self, session_factory):
        order = make_order()

        async with UnitOfWork(
            session_factory, correlation_id="req-42", notify_processor=False
        ) as uow:
            uow.add(order)
            order.place(total_cents=100)

        (record,) = await fetch_outbox(session_factory)
        assert record.correlation_id == "req-42"

    async def test_loaded_aggregates_are_collected(self, session_factory):
        """Aggregates loaded through the session need no explicit tracking."""
        order = make_order()
        async with UnitOfWork(session_factory, notify_processor=False) as uow:
            uow.add(order)

        async with UnitOfWork(session_factory, notify_processor=False) as uow:
            loaded = await uow.session.get(Order, order.id)
            loaded.ship(carrier="dhl")

        records = await fetch_outbox(session_factory)
        assert [r.event_type for r in records] == ["order.shipped"]

    async def test_save_changes_stages_each_event_once(self, session_factory):
        order = make_order()

        async with UnitOfWork(session_factory, notify_processor=False) as uow:
            uow.add(order)
            order.place(total_cents=100)
            assert await uow.save_changes() == 1
            assert await uow.save_changes() == 0
            order.ship(carrier="ups")
            assert await uow.save_changes() == 1

        assert len(await fetch_outbox(session_factory)) == 2

    async def test_no_events_no_records(self, session_factory):
        async with UnitOfWork(session_factory, notify_processor=False) as uow:
            uow.add(make_order())

        assert await _count(session_factory, EventOutbox) == 0

    async def test_track_rejects_non_aggregates(self, session_factory):
        uow = UnitOfWork(session_factory)

        with pytest.raises(TypeError, match="Expected an AggregateRoot"):
            uow.track(object())
        await uow.close()


class TestRollback:
    """Nothing is appended unless the business transaction commits."""

    async def test_exception_rolls_back_order_and_events(self, session_factory):
        order = make_order()

        with pytest.raises(RuntimeError, match="payment declined"):
            async with UnitOfWork(session_factory, notify_processor=False) as uow:
                uow.add(order)
                order.place(total_cents=100)
                await uow.save_changes()
                raise RuntimeError("payment declined")

        assert await _count(session_factory, Order) == 0
        assert await _count(session_factory, EventOutbox) == 0
        # Events stay with the aggregate when the commit did not happen
        assert len(order.domain_events) == 1

    async def test_serialization_failure_aborts_business_change(self, session_factory):
        order = make_order()

        with pytest.raises(EventSerializationError):
            async with UnitOfWork(session_factory, notify_processor=False) as uow:
                uow.add(order)
                order.place(total_cents=100)
                order.raise_event(
                    Flagged(order_id=str(order.id), metadata={"handle": object()})
                )

        assert await _count(session_factory, Order) == 0
        assert await _count(session_factory, EventOutbox) == 0

    async def test_explicit_rollback_keeps_events(self, session_factory):
        order = make_order()
        uow = UnitOfWork(session_factory, notify_processor=False)
        uow.add(order)
        order.place(total_cents=100)
        await uow.save_changes()

        await uow.rollback()
        await uow.close()

        assert len(order.domain_events) == 1
        assert await _count(session_factory, EventOutbox) == 0


class TestNotify:
    @pytest.mark.usefixtures("reset_global_processor")
    async def test_commit_wakes_running_processor(self, session_factory, monkeypatch):
        from commerce_outbox.infra.events.outbox import processor as processor_module

        class FakeProcessor:
            is_running = True
            notified = 0

            def notify(self) -> None:
                self.notified += 1

            async def stop(self) -> None:
                self.is_running = False

        fake = FakeProcessor()
        monkeypatch.setattr(processor_module, "_processor", fake)
        order = make_order()

        async with UnitOfWork(session_factory) as uow:
            uow.add(order)
            order.place(total_cents=100)

        assert fake.notified == 1

    async def test_default_session_factory(self, configured_database):
        order = make_order()

        async with UnitOfWork(notify_processor=False) as uow:
            uow.add(order)
            order.place(total_cents=100)

        assert len(await fetch_outbox(configured_database)) == 1
