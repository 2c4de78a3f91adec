import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from naks.checkout.coupons import CouponResolver, StaticCouponSource
from naks.checkout.models.checkout import (
    CheckoutData,
    CheckoutStep,
    ConfirmationOutcome,
    NoticeAction,
    NoticeTone,
)
from naks.checkout.models.config import PaymentConfig
from naks.checkout.models.coupon import Coupon, DiscountType
from naks.checkout.models.customer import GUEST, CustomerIdentity, DeliveryMethod
from naks.checkout.models.event import Event, TicketType
from naks.checkout.models.payment import (
    InitiationRequest,
    InitiationResult,
    PaymentRecord,
    PaymentStatus,
)
from naks.checkout.orchestrator import (
    CheckoutOrchestrator,
    CheckoutStateError,
    create_checkout_data,
)
from naks.checkout.payment.initiator import PaymentInitiator
from naks.checkout.payment.mock import MockGateway
from naks.checkout.watcher import MemoryPaymentRecordStore

now = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

event = Event(
    id="sauti-sol-live",
    name="Sauti Sol Live",
    date=date(2026, 12, 12),
    open=True,
    visible=True,
    ticket_types=(
        TicketType(id="ga", name="GA", price=Decimal("1500"), available=10),
        TicketType(id="vip", name="VIP", price=Decimal("3000"), max_per_order=2),
        TicketType(id="student", name="Student", price=Decimal("300")),
        TicketType(id="free", name="Free", price=Decimal("0")),
    ),
)

coupons = [
    Coupon(
        code="NAKSYETU20",
        discount_type=DiscountType.percentage,
        discount_value=Decimal("20"),
        minimum_order_amount=Decimal("1000"),
    ),
    Coupon(
        code="WELCOME500",
        discount_type=DiscountType.fixed,
        discount_value=Decimal("500"),
    ),
]

REJECTED_PHONE = "254700000000"


class CountingGateway(MockGateway):
    def __init__(self, delay: float = 0.0):
        super().__init__(frozenset((REJECTED_PHONE,)))
        self.delay = delay
        self.requests: list[InitiationRequest] = []

    async def initiate(self, request: InitiationRequest) -> InitiationResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return await super().initiate(request)


class Harness:
    def __init__(self, gateway: CountingGateway):
        self.clock = now
        self.store = MemoryPaymentRecordStore()
        self.gateway = gateway
        self.saved: list[CheckoutData] = []

    def get_time(self) -> datetime:
        return self.clock

    async def record(self, request: InitiationRequest, result: InitiationResult):
        self.store.set(
            PaymentRecord(
                id=result.payment_id,
                status=PaymentStatus.pending,
                provider_request_id=result.provider_request_id,
            )
        )

    async def save(self, data: CheckoutData):
        self.saved.append(data)

    def make(self, data: CheckoutData) -> CheckoutOrchestrator:
        return CheckoutOrchestrator(
            data,
            event=event,
            config=PaymentConfig(status_timeout=300.0),
            coupon_resolver=CouponResolver(
                [StaticCouponSource(coupons)], get_time=self.get_time
            ),
            initiator=PaymentInitiator("naks-yetu", self.gateway, self.record),
            store=self.store,
            on_change=self.save,
            get_time=self.get_time,
        )

    def complete(self, payment_id: str, receipt: str = "NLJ7RT61SV"):
        self.store.set(
            PaymentRecord(
                id=payment_id,
                status=PaymentStatus.completed,
                mpesa_receipt_number=receipt,
            )
        )


@pytest.fixture
def harness() -> Harness:
    return Harness(CountingGateway())


@pytest.fixture
def orchestrator(harness: Harness):
    o = harness.make(create_checkout_data(event, GUEST))
    yield o
    o.close()


async def to_payment_details(o: CheckoutOrchestrator, phone: str = "0712345678"):
    assert await o.change_quantity("ga", 2) == {}
    assert await o.set_customer_info("Jane Doe", "jane@example.com") == {}
    assert await o.next() == {}
    assert o.data.step == CheckoutStep.coupon
    assert await o.next() == {}
    assert o.data.step == CheckoutStep.payment_details
    assert await o.set_payment_details(phone) == {}


@pytest.mark.asyncio
async def test_successful_payment(harness: Harness, orchestrator: CheckoutOrchestrator):
    await to_payment_details(orchestrator)

    assert await orchestrator.pay() == {}

    data = orchestrator.data
    assert data.step == CheckoutStep.confirmation
    assert data.payment_status == PaymentStatus.pending
    assert data.transaction_id is not None
    assert data.initiated_at == now
    assert data.outcome is None
    assert harness.saved[-1] == data
    assert orchestrator.watcher.is_active

    request = harness.gateway.requests[0]
    assert request.phone_number == "254712345678"
    assert request.amount == Decimal("3000")
    assert request.account_reference == "NAKS_JANED_SAUTI"
    assert request.customer_email == "jane@example.com"

    harness.complete(data.transaction_id)
    outcome = await orchestrator.wait_for_outcome(1)

    assert outcome == ConfirmationOutcome.success
    assert orchestrator.data.mpesa_receipt_number == "NLJ7RT61SV"
    assert orchestrator.data.notice.action == NoticeAction.view_tickets
    assert harness.store.subscriber_count == 0


@pytest.mark.asyncio
async def test_failed_payment(harness: Harness, orchestrator: CheckoutOrchestrator):
    await to_payment_details(orchestrator)
    await orchestrator.pay()

    harness.store.set(
        PaymentRecord(
            id=orchestrator.data.transaction_id,
            status=PaymentStatus.failed,
            error_reason="Request cancelled by user",
        )
    )
    outcome = await orchestrator.wait_for_outcome(1)

    assert outcome == ConfirmationOutcome.failed
    assert orchestrator.data.payment_error == "Request cancelled by user"
    assert orchestrator.data.notice.message == "Request cancelled by user"
    assert orchestrator.data.notice.action == NoticeAction.back_to_event
    assert harness.store.subscriber_count == 0

    with pytest.raises(CheckoutStateError):
        await orchestrator.pay()


@pytest.mark.asyncio
async def test_rejected_initiation_can_retry(
    harness: Harness, orchestrator: CheckoutOrchestrator
):
    await to_payment_details(orchestrator, "0700000000")

    assert await orchestrator.pay() == {}

    data = orchestrator.data
    assert data.step == CheckoutStep.payment_details
    assert data.payment_status == PaymentStatus.failed
    assert data.payment_error == "The subscriber is not reachable"
    assert data.transaction_id is None
    assert data.notice.tone == NoticeTone.error
    assert data.notice.action == NoticeAction.retry
    assert "The subscriber is not reachable" in data.notice.message
    assert data.can_pay
    assert orchestrator.watcher is None

    await orchestrator.set_payment_details("0712345678")
    await orchestrator.pay()

    assert orchestrator.data.step == CheckoutStep.confirmation
    assert len(harness.gateway.requests) == 2


@pytest.mark.asyncio
async def test_rapid_pay_initiates_once():
    harness = Harness(CountingGateway(delay=0.01))
    o = harness.make(create_checkout_data(event, GUEST))
    await to_payment_details(o)

    results = await asyncio.gather(*(o.pay() for _ in range(5)), return_exceptions=True)

    assert len(harness.gateway.requests) == 1
    assert results[0] == {}
    assert all(isinstance(r, CheckoutStateError) for r in results[1:])
    assert o.data.step == CheckoutStep.confirmation
    o.close()


@pytest.mark.asyncio
async def test_initiating_blocks_changes():
    harness = Harness(CountingGateway(delay=0.05))
    o = harness.make(create_checkout_data(event, GUEST))
    await to_payment_details(o)

    task = asyncio.create_task(o.pay())
    await asyncio.sleep(0)

    assert o.data.is_processing_payment
    assert harness.saved[-1].payment_status == PaymentStatus.initiating
    with pytest.raises(CheckoutStateError):
        await o.change_quantity("ga", 1)
    with pytest.raises(CheckoutStateError):
        await o.back()
    with pytest.raises(CheckoutStateError):
        o.abandon()

    await task
    o.close()


@pytest.mark.asyncio
async def test_initiation_error_keeps_retry(harness: Harness):
    class BrokenGateway(CountingGateway):
        async def initiate(self, request):
            raise RuntimeError("boom")

    harness.gateway = BrokenGateway()
    o = harness.make(create_checkout_data(event, GUEST))
    await to_payment_details(o)

    assert await o.pay() == {}

    assert o.data.payment_status == PaymentStatus.failed
    assert o.data.step == CheckoutStep.payment_details
    assert o.data.notice.action == NoticeAction.retry
    assert o.data.initiating_since is None
    assert o.data.can_pay
    assert harness.saved[-1].payment_status == PaymentStatus.failed


@pytest.mark.asyncio
async def test_resume_does_not_initiate(
    harness: Harness, orchestrator: CheckoutOrchestrator
):
    await to_payment_details(orchestrator)
    await orchestrator.pay()
    orchestrator.close()
    persisted = harness.saved[-1]

    # a new request for the same checkout
    resumed = harness.make(persisted)
    try:
        assert await resumed.wait_for_outcome(0.01) is None
        assert resumed.watcher.is_active

        with pytest.raises(CheckoutStateError):
            await resumed.pay()
        with pytest.raises(CheckoutStateError):
            await resumed.next()

        harness.complete(persisted.transaction_id)
        assert await resumed.wait_for_outcome(1) == ConfirmationOutcome.success
    finally:
        resumed.close()

    assert len(harness.gateway.requests) == 1
    assert harness.store.subscriber_count == 0


@pytest.mark.asyncio
async def test_status_unknown_after_timeout(
    harness: Harness, orchestrator: CheckoutOrchestrator
):
    await to_payment_details(orchestrator)
    await orchestrator.pay()

    harness.clock = now + timedelta(seconds=301)
    outcome = await orchestrator.wait_for_outcome()

    assert outcome == ConfirmationOutcome.pending_unknown
    assert orchestrator.data.status_timed_out
    assert orchestrator.data.notice.tone == NoticeTone.warning
    assert orchestrator.data.notice.action == NoticeAction.check_later

    # a late result is still picked up
    harness.complete(orchestrator.data.transaction_id)
    assert await orchestrator.wait_for_outcome() == ConfirmationOutcome.success


@pytest.mark.asyncio
async def test_review_validation(orchestrator: CheckoutOrchestrator):
    errors = await orchestrator.next()

    assert set(errors) == {"order", "customer_name", "customer_email"}
    assert orchestrator.data.step == CheckoutStep.review_order
    assert orchestrator.data.notice.action == NoticeAction.edit_field


@pytest.mark.asyncio
async def test_zero_total_cannot_advance(orchestrator: CheckoutOrchestrator):
    await orchestrator.change_quantity("free", 1)
    await orchestrator.set_customer_info("Jane Doe", "jane@example.com")

    errors = await orchestrator.next()
    assert "order" in errors


@pytest.mark.asyncio
async def test_payment_details_validation(orchestrator: CheckoutOrchestrator):
    await to_payment_details(orchestrator)

    errors = await orchestrator.set_payment_details("12345")
    assert set(errors) == {"mpesa_phone_number"}

    errors = await orchestrator.next()
    assert set(errors) == {"mpesa_phone_number"}
    assert orchestrator.data.step == CheckoutStep.payment_details
    assert orchestrator.data.payment_status == PaymentStatus.idle


@pytest.mark.asyncio
async def test_invalid_phone_makes_no_request(
    harness: Harness, orchestrator: CheckoutOrchestrator
):
    await to_payment_details(orchestrator)
    await orchestrator.set_payment_details("12345")

    errors = await orchestrator.pay()

    assert "mpesa_phone_number" in errors
    assert harness.gateway.requests == []
    assert await harness.store.get("anything") is None


@pytest.mark.asyncio
async def test_capacity_exceeded(orchestrator: CheckoutOrchestrator):
    errors = await orchestrator.change_quantity("vip", 3)

    assert errors == {"tickets.vip": "Only 2 tickets of this type are available"}
    assert orchestrator.data.order.is_empty


@pytest.mark.asyncio
async def test_unknown_ticket_type(orchestrator: CheckoutOrchestrator):
    errors = await orchestrator.change_quantity("backstage", 1)
    assert "ticket_type_id" in errors


@pytest.mark.asyncio
async def test_coupon_round_trip(orchestrator: CheckoutOrchestrator):
    await orchestrator.change_quantity("ga", 2)
    await orchestrator.change_quantity("vip", 1)
    assert orchestrator.data.calculated_total_price == Decimal("6000")

    result = await orchestrator.apply_coupon("naksyetu20")

    assert result.valid
    assert orchestrator.data.coupon_code == "NAKSYETU20"
    assert orchestrator.data.coupon_discount_amount == Decimal("1200")
    assert orchestrator.data.final_amount_to_pay == Decimal("4800")

    await orchestrator.remove_coupon()

    assert orchestrator.data.coupon_code is None
    assert orchestrator.data.coupon_discount_amount == Decimal("0")
    assert orchestrator.data.final_amount_to_pay == Decimal("6000")


@pytest.mark.asyncio
async def test_fixed_coupon_clamped(orchestrator: CheckoutOrchestrator):
    await orchestrator.change_quantity("student", 1)

    await orchestrator.apply_coupon("WELCOME500")

    assert orchestrator.data.coupon_discount_amount == Decimal("300")
    assert orchestrator.data.final_amount_to_pay == Decimal("0")


@pytest.mark.asyncio
async def test_discount_recomputed(orchestrator: CheckoutOrchestrator):
    await orchestrator.change_quantity("ga", 2)
    await orchestrator.apply_coupon("NAKSYETU20")
    assert orchestrator.data.coupon_discount_amount == Decimal("600")

    await orchestrator.change_quantity("ga", 2)
    assert orchestrator.data.coupon_discount_amount == Decimal("1200")

    await orchestrator.change_quantity("ga", -3)
    assert orchestrator.data.coupon_discount_amount == Decimal("300")


@pytest.mark.asyncio
async def test_coupon_removed_below_minimum(orchestrator: CheckoutOrchestrator):
    await orchestrator.change_quantity("ga", 1)
    await orchestrator.apply_coupon("NAKSYETU20")

    await orchestrator.remove_ticket("ga")

    data = orchestrator.data
    assert data.coupon_code is None
    assert data.coupon_discount_amount == Decimal("0")
    assert data.notice.tone == NoticeTone.warning
    assert "NAKSYETU20" in data.notice.message


@pytest.mark.asyncio
async def test_rejected_coupon_leaves_state(
    harness: Harness, orchestrator: CheckoutOrchestrator
):
    await orchestrator.change_quantity("ga", 1)
    before = orchestrator.data
    saved = len(harness.saved)

    result = await orchestrator.apply_coupon("NOPE")

    assert not result.valid
    assert result.reason == "Invalid coupon code"
    assert orchestrator.data == before
    assert len(harness.saved) == saved


@pytest.mark.asyncio
async def test_back(orchestrator: CheckoutOrchestrator):
    await to_payment_details(orchestrator)

    await orchestrator.back()
    assert orchestrator.data.step == CheckoutStep.coupon
    await orchestrator.back()
    assert orchestrator.data.step == CheckoutStep.review_order
    await orchestrator.back()
    assert orchestrator.data.step == CheckoutStep.review_order


@pytest.mark.asyncio
async def test_back_does_not_validate(orchestrator: CheckoutOrchestrator):
    await to_payment_details(orchestrator)
    await orchestrator.set_payment_details("bad")

    await orchestrator.back()
    assert orchestrator.data.step == CheckoutStep.coupon


@pytest.mark.asyncio
async def test_no_changes_after_payment_requested(orchestrator: CheckoutOrchestrator):
    await to_payment_details(orchestrator)
    await orchestrator.pay()

    with pytest.raises(CheckoutStateError):
        await orchestrator.back()
    with pytest.raises(CheckoutStateError):
        await orchestrator.change_quantity("ga", 1)
    with pytest.raises(CheckoutStateError):
        await orchestrator.apply_coupon("NAKSYETU20")
    with pytest.raises(CheckoutStateError):
        orchestrator.abandon()


@pytest.mark.asyncio
async def test_abandon_before_payment(orchestrator: CheckoutOrchestrator):
    await to_payment_details(orchestrator)
    orchestrator.abandon()


@pytest.mark.asyncio
async def test_authenticated_customer(harness: Harness):
    customer = CustomerIdentity(
        uid="user-1",
        email="jane@example.com",
        display_name="Jane Doe",
        phone_number="0712345678",
    )
    o = harness.make(create_checkout_data(event, customer))

    assert o.data.is_authenticated
    assert o.data.customer_name == "Jane Doe"
    assert o.data.mpesa_phone_number == "0712345678"

    with pytest.raises(CheckoutStateError):
        await o.set_customer_info(name="Someone Else")

    errors = await o.set_customer_info(delivery_method=DeliveryMethod.download)
    assert errors == {}
    assert o.data.ticket_delivery_method == DeliveryMethod.download

    await o.change_quantity("ga", 1)
    assert await o.next() == {}


@pytest.mark.asyncio
async def test_interrupted_initiation_becomes_unknown(harness: Harness):
    class InterruptedGateway(CountingGateway):
        async def initiate(self, request):
            self.requests.append(request)
            raise asyncio.CancelledError

    harness.gateway = InterruptedGateway()
    o = harness.make(create_checkout_data(event, GUEST))
    await to_payment_details(o)

    with pytest.raises(asyncio.CancelledError):
        await o.pay()
    o.close()

    persisted = harness.saved[-1]
    assert persisted.payment_status == PaymentStatus.initiating
    assert persisted.initiating_since == now

    # still within the gateway timeout
    harness.clock = now + timedelta(seconds=30)
    o = harness.make(persisted)
    assert await o.wait_for_outcome() is None
    assert o.data.is_processing_payment
    with pytest.raises(CheckoutStateError):
        await o.pay()

    harness.clock = now + timedelta(seconds=61)
    o = harness.make(persisted)
    assert await o.wait_for_outcome() == ConfirmationOutcome.pending_unknown

    data = harness.saved[-1]
    assert data.step == CheckoutStep.confirmation
    assert data.initiating_since is None
    assert data.notice.action == NoticeAction.check_later
    assert data.outcome == ConfirmationOutcome.pending_unknown
    assert not data.can_pay
    assert not data.can_abandon

    with pytest.raises(CheckoutStateError):
        await o.pay()
    with pytest.raises(CheckoutStateError):
        await o.back()
    with pytest.raises(CheckoutStateError):
        o.abandon()
    assert len(harness.gateway.requests) == 1
    o.close()


@pytest.mark.asyncio
async def test_recorder_failure_is_not_retryable(harness: Harness):
    async def failing_record(request, result):
        raise RuntimeError("database unavailable")

    harness.record = failing_record
    o = harness.make(create_checkout_data(event, GUEST))
    await to_payment_details(o)

    with pytest.raises(RuntimeError):
        await o.pay()

    assert harness.saved[-1].payment_status == PaymentStatus.initiating
    with pytest.raises(CheckoutStateError):
        await o.pay()

    harness.clock = now + timedelta(minutes=5)
    assert await o.expire_stale_initiation()
    assert o.data.outcome == ConfirmationOutcome.pending_unknown
    assert not await o.expire_stale_initiation()
    o.close()
