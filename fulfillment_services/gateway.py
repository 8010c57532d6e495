"""
FulfillmentGateway -- the outer boundary around the kernel.

Responsibility:
    One method per operation.  Each call:

    1. resolves the principal through the IdentityProvider and checks its
       role (401 without a principal, 403 with the wrong role);
    2. opens one transaction (``session_scope``) and runs the kernel
       service or selector inside it;
    3. converts typed kernel errors into a failure envelope and wraps
       anything else (store errors included) as InternalError;
    4. after a successful commit, dispatches notifications and receipts
       best-effort.

Architecture position:
    Services layer -- above ``fulfillment_kernel`` and ``fulfillment_config``.
    The kernel never imports this package.

Failure modes:
    Never raises for business or store failures; every outcome is an
    OperationResult.  Errors are never retried.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.db.engine import session_scope
from fulfillment_kernel.db.immutability import register_immutability_listeners
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.collaborators import (
    DocumentRenderer,
    IdentityProvider,
    NullNotifier,
    Notifier,
    PlainTextReceiptRenderer,
    Principal,
    Role,
)
from fulfillment_kernel.domain.commands import (
    AdjustStock,
    AdvanceDelivery,
    AssignDelivery,
    BulkAction,
    CancelOrder,
    ChangeOrderStatus,
    ConfirmPayment,
    CorrectAllowance,
    CreateOrder,
    EditOnDeliveryPayment,
    ReceiveStock,
    RegisterCourier,
    RegisterOwner,
    RejectPayment,
    ResizeOrder,
    RetryPayment,
    SubmitPaymentReference,
    UpdateBatch,
    UpdateCourier,
    UpdateOrderDetails,
)
from fulfillment_kernel.domain.dtos import OrderInfo, to_primitive
from fulfillment_kernel.domain.order_state import AssignmentStatus, OrderStatus
from fulfillment_kernel.domain.policy import KernelPolicy
from fulfillment_kernel.domain.values import BulkActionType
from fulfillment_kernel.exceptions import (
    AuthenticationError,
    AuthorizationError,
    FulfillmentKernelError,
    InternalError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.selectors import CourierSelector, OrderFilter, OrderSelector, StockSelector
from fulfillment_kernel.services import (
    BulkActionService,
    CourierService,
    DeliveryService,
    LedgerAuditor,
    OrderService,
    OwnerService,
    PaymentService,
    StockService,
)
from fulfillment_kernel.services.lookups import latest_payment, load_assignment, load_order, load_owner
from fulfillment_services.results import OperationResult
from fulfillment_services.side_effects import Notification, SideEffectDispatcher

logger = get_logger("services.gateway")

OPERATOR_ONLY = frozenset({Role.OPERATOR})
REQUESTER_ONLY = frozenset({Role.REQUESTER})


@dataclass
class CallContext:
    """Per-call state handed to operation bodies."""

    session: Session
    principal: Principal | None
    effects: list[Notification] = field(default_factory=list)

    @property
    def actor_id(self) -> UUID:
        return self.principal.id

    def notify(self, recipient: str | None, template: str, **context: Any) -> None:
        if recipient:
            self.effects.append(Notification(recipient, template, context))


class FulfillmentGateway:
    """
    Transaction and identity boundary for every kernel operation.

    Contract:
        Methods take ids and typed commands and return OperationResult.
        The identity provider decides who is calling; requester methods act
        on the caller's own account.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        identity: IdentityProvider,
        *,
        clock: Clock | None = None,
        policy: KernelPolicy | None = None,
        notifier: Notifier | None = None,
        renderer: DocumentRenderer | None = None,
    ):
        self._session_factory = session_factory
        self._identity = identity
        self._clock = clock or SystemClock()
        self._policy = policy or KernelPolicy()
        self._dispatcher = SideEffectDispatcher(
            notifier or NullNotifier(),
            renderer or PlainTextReceiptRenderer(),
        )
        register_immutability_listeners()

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------

    def _authorize(self, operation: str, roles: Iterable[Role] | None) -> Principal | None:
        principal = self._identity.current_principal()
        if roles is None:
            return principal
        if principal is None:
            raise AuthenticationError()
        if principal.role not in roles:
            raise AuthorizationError(
                f"{principal.role.value} may not perform {operation}",
                actor_id=str(principal.id),
            )
        return principal

    def _run(
        self,
        operation: str,
        body: Callable[[CallContext], Any],
        *,
        roles: Iterable[Role] | None = OPERATOR_ONLY,
        message: str = "OK",
        http_status: int = 200,
    ) -> OperationResult:
        with LogContext.bind(correlation_id=str(uuid4()), operation=operation):
            try:
                principal = self._authorize(operation, roles)
                with LogContext.bind(actor_id=str(principal.id) if principal else None):
                    with session_scope(self._session_factory) as session:
                        context = CallContext(session, principal)
                        data = body(context)
            except FulfillmentKernelError as exc:
                logger.info(
                    "operation_rejected",
                    extra={"error_code": exc.code, "http_status": exc.http_status},
                )
                return OperationResult.failure(exc)
            except Exception as exc:
                logger.error(
                    "operation_failed",
                    extra={"error_type": type(exc).__name__},
                    exc_info=True,
                )
                return OperationResult.failure(InternalError(cause=type(exc).__name__))

            if context.effects:
                self._dispatcher.dispatch(operation, context.effects)
            logger.info("operation_completed")
            return OperationResult.ok(data, message=message, http_status=http_status)

    def _orders(self, session: Session) -> OrderService:
        return OrderService(session, self._clock, self._policy)

    def _receipt_snapshot(self, session: Session, order: OrderInfo) -> dict[str, Any]:
        snapshot = to_primitive(order)
        latest = latest_payment(session, order.id)
        snapshot["amount"] = str(latest.amount) if latest else None
        return snapshot

    def _notify_status(self, ctx: CallContext, order: OrderInfo) -> None:
        ctx.notify(
            order.contact_email,
            "order_status_changed",
            order_id=str(order.id),
            status=order.status.value,
            name=order.contact_name,
        )
        if order.status == OrderStatus.DELIVERED:
            ctx.effects.append(
                Notification(
                    order.contact_email,
                    "order_delivered_receipt",
                    {"order_id": str(order.id)},
                    receipt_snapshot=self._receipt_snapshot(ctx.session, order),
                )
            )

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    def register_owner(self, command: RegisterOwner) -> OperationResult:
        """Self-registration (no principal needed) or operator-created account."""

        def body(ctx: CallContext):
            actor = ctx.principal.id if ctx.principal else None
            if command.role != Role.REQUESTER and (ctx.principal is None or not ctx.principal.is_operator):
                raise AuthorizationError("Only operators can create non-requester accounts")
            owner = OwnerService(ctx.session, self._clock, self._policy).register(command, actor)
            ctx.notify(owner.email, "welcome", name=owner.name, quota=owner.remaining_quota)
            return owner

        return self._run("register_owner", body, roles=None, message="Account created", http_status=201)

    def my_allowance(self) -> OperationResult:
        def body(ctx: CallContext):
            return OwnerService(ctx.session, self._clock, self._policy).get(ctx.actor_id)

        return self._run("my_allowance", body, roles=REQUESTER_ONLY)

    def correct_allowance(self, owner_id: UUID, command: CorrectAllowance) -> OperationResult:
        def body(ctx: CallContext):
            return OwnerService(ctx.session, self._clock, self._policy).correct_allowance(
                owner_id, command, ctx.actor_id
            )

        return self._run("correct_allowance", body, message="Allowance corrected")

    def delete_owner(self, owner_id: UUID) -> OperationResult:
        def body(ctx: CallContext):
            removed = OwnerService(ctx.session, self._clock, self._policy).delete_owner(
                owner_id, ctx.actor_id
            )
            return {"owner_id": owner_id, "orders_removed": removed}

        return self._run("delete_owner", body, message="Account deleted")

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(self, command: CreateOrder, owner_id: UUID | None = None) -> OperationResult:
        """
        Requesters order for themselves; operators pass ``owner_id`` to
        create an order on an owner's behalf.
        """

        def body(ctx: CallContext):
            if ctx.principal.is_operator:
                if owner_id is None:
                    raise AuthorizationError("Operators must name the owner of the order")
                target = owner_id
            elif owner_id not in (None, ctx.actor_id):
                raise AuthorizationError(
                    "Requesters can only order for themselves", actor_id=str(ctx.actor_id)
                )
            else:
                target = ctx.actor_id
            order = self._orders(ctx.session).create_order(target, command, ctx.actor_id)
            ctx.notify(
                order.contact_email,
                "order_created",
                order_id=str(order.id),
                quantity=order.quantity,
                name=order.contact_name,
            )
            return order

        return self._run(
            "create_order",
            body,
            roles={Role.REQUESTER, Role.OPERATOR},
            message="Booking request submitted",
            http_status=201,
        )

    def approve_order(self, order_id: UUID) -> OperationResult:
        def body(ctx: CallContext):
            order = self._orders(ctx.session).approve(order_id, ctx.actor_id)
            self._notify_status(ctx, order)
            return order

        return self._run("approve_order", body, message="Booking approved")

    def change_order_status(self, order_id: UUID, command: ChangeOrderStatus) -> OperationResult:
        def body(ctx: CallContext):
            order = self._orders(ctx.session).change_status(order_id, command, ctx.actor_id)
            self._notify_status(ctx, order)
            return order

        return self._run("change_order_status", body, message="Booking status updated")

    def cancel_my_order(self, order_id: UUID, command: CancelOrder) -> OperationResult:
        def body(ctx: CallContext):
            return self._orders(ctx.session).cancel_by_requester(
                order_id, ctx.actor_id, command, ctx.actor_id
            )

        return self._run("cancel_my_order", body, roles=REQUESTER_ONLY, message="Booking cancelled")

    def cancel_order(self, order_id: UUID, command: CancelOrder) -> OperationResult:
        def body(ctx: CallContext):
            order = self._orders(ctx.session).cancel_by_operator(order_id, command, ctx.actor_id)
            self._notify_status(ctx, order)
            return order

        return self._run("cancel_order", body, message="Booking cancelled")

    def resize_order(self, order_id: UUID, command: ResizeOrder) -> OperationResult:
        def body(ctx: CallContext):
            return self._orders(ctx.session).resize(order_id, command, ctx.actor_id)

        return self._run("resize_order", body, message="Booking quantity updated")

    def update_order_details(self, order_id: UUID, command: UpdateOrderDetails) -> OperationResult:
        def body(ctx: CallContext):
            return self._orders(ctx.session).update_details(order_id, command, ctx.actor_id)

        return self._run("update_order_details", body, message="Booking details updated")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _payments(self, session: Session) -> PaymentService:
        return PaymentService(session, self._clock, self._policy)

    def submit_payment_reference(self, order_id: UUID, command: SubmitPaymentReference) -> OperationResult:
        def body(ctx: CallContext):
            return self._payments(ctx.session).submit_reference(order_id, ctx.actor_id, command)

        return self._run(
            "submit_payment_reference", body, roles=REQUESTER_ONLY, message="Payment submitted for review"
        )

    def retry_payment(self, order_id: UUID, command: RetryPayment) -> OperationResult:
        def body(ctx: CallContext):
            return self._payments(ctx.session).retry(order_id, ctx.actor_id, command)

        return self._run("retry_payment", body, roles=REQUESTER_ONLY, message="Payment resubmitted")

    def confirm_payment(self, payment_id: UUID, command: ConfirmPayment) -> OperationResult:
        def body(ctx: CallContext):
            payment = self._payments(ctx.session).confirm(payment_id, command, ctx.actor_id)
            order = load_order(ctx.session, payment.order_id)
            ctx.notify(order.contact_email, "payment_confirmed", order_id=str(order.id))
            return payment

        return self._run("confirm_payment", body, message="Payment confirmed")

    def reject_payment(self, payment_id: UUID, command: RejectPayment) -> OperationResult:
        def body(ctx: CallContext):
            payment = self._payments(ctx.session).reject(payment_id, command, ctx.actor_id)
            order = load_order(ctx.session, payment.order_id)
            ctx.notify(
                order.contact_email,
                "payment_rejected",
                order_id=str(order.id),
                reason=payment.failure_reason,
            )
            return payment

        return self._run("reject_payment", body, message="Payment rejected")

    def edit_on_delivery_payment(self, order_id: UUID, command: EditOnDeliveryPayment) -> OperationResult:
        def body(ctx: CallContext):
            return self._payments(ctx.session).edit_on_delivery(order_id, command, ctx.actor_id)

        return self._run("edit_on_delivery_payment", body, message="Payment updated")

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def assign_delivery(self, order_id: UUID, command: AssignDelivery) -> OperationResult:
        def body(ctx: CallContext):
            assignment = DeliveryService(ctx.session, self._clock, self._policy).assign(
                order_id, command, ctx.actor_id
            )
            order = load_order(ctx.session, order_id)
            ctx.notify(
                order.contact_email,
                "delivery_scheduled",
                order_id=str(order.id),
                scheduled_date=assignment.scheduled_date.isoformat(),
            )
            return assignment

        return self._run("assign_delivery", body, message="Delivery assigned", http_status=201)

    def advance_delivery(self, assignment_id: UUID, command: AdvanceDelivery) -> OperationResult:
        """Operators advance any assignment; couriers only their own."""

        def body(ctx: CallContext):
            if ctx.principal.role == Role.COURIER:
                assignment = load_assignment(ctx.session, assignment_id)
                if assignment.courier_id != ctx.actor_id:
                    raise AuthorizationError(
                        f"Assignment {assignment_id} belongs to another courier",
                        actor_id=str(ctx.actor_id),
                    )
            assignment = DeliveryService(ctx.session, self._clock, self._policy).advance(
                assignment_id, command, ctx.actor_id
            )
            if assignment.status in (AssignmentStatus.DELIVERED, AssignmentStatus.FAILED):
                self._notify_status(ctx, load_order(ctx.session, assignment.order_id).to_dto())
            return assignment

        return self._run(
            "advance_delivery",
            body,
            roles={Role.OPERATOR, Role.COURIER},
            message="Delivery status updated",
        )

    # ------------------------------------------------------------------
    # Couriers
    # ------------------------------------------------------------------

    def register_courier(self, command: RegisterCourier) -> OperationResult:
        def body(ctx: CallContext):
            return CourierService(ctx.session, self._clock, self._policy).register(command, ctx.actor_id)

        return self._run("register_courier", body, message="Delivery partner added", http_status=201)

    def update_courier(self, courier_id: UUID, command: UpdateCourier) -> OperationResult:
        def body(ctx: CallContext):
            return CourierService(ctx.session, self._clock, self._policy).update(
                courier_id, command, ctx.actor_id
            )

        return self._run("update_courier", body, message="Delivery partner updated")

    def deactivate_courier(self, courier_id: UUID) -> OperationResult:
        def body(ctx: CallContext):
            return CourierService(ctx.session, self._clock, self._policy).deactivate(
                courier_id, ctx.actor_id
            )

        return self._run("deactivate_courier", body, message="Delivery partner deactivated")

    def courier_load(self, courier_id: UUID, day: date) -> OperationResult:
        return self._run(
            "courier_load",
            lambda ctx: CourierSelector(ctx.session).daily_load(courier_id, day),
        )

    def list_couriers(self, active_only: bool = False) -> OperationResult:
        return self._run(
            "list_couriers",
            lambda ctx: CourierSelector(ctx.session).list_couriers(active_only),
        )

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def _stock(self, session: Session) -> StockService:
        return StockService(session, self._clock, self._policy)

    def receive_stock(self, command: ReceiveStock) -> OperationResult:
        return self._run(
            "receive_stock",
            lambda ctx: self._stock(ctx.session).receive(command, ctx.actor_id),
            message="Stock received",
            http_status=201,
        )

    def adjust_stock(self, command: AdjustStock) -> OperationResult:
        return self._run(
            "adjust_stock",
            lambda ctx: self._stock(ctx.session).adjust(command, ctx.actor_id),
            message="Stock adjusted",
        )

    def update_batch(self, batch_id: UUID, command: UpdateBatch) -> OperationResult:
        return self._run(
            "update_batch",
            lambda ctx: self._stock(ctx.session).update_batch(batch_id, command, ctx.actor_id),
            message="Batch updated",
        )

    def delete_batch(self, batch_id: UUID) -> OperationResult:
        return self._run(
            "delete_batch",
            lambda ctx: self._stock(ctx.session).delete_batch(batch_id, ctx.actor_id),
            message="Batch deleted",
        )

    def stock_summary(self) -> OperationResult:
        def body(ctx: CallContext):
            selector = StockSelector(ctx.session)
            return {
                "total_available": selector.current_total(),
                "recent_adjustments": selector.adjustments(limit=20),
                "batches": selector.batches(),
            }

        return self._run("stock_summary", body)

    def stock_analytics(self, since: datetime | None = None) -> OperationResult:
        return self._run(
            "stock_analytics",
            lambda ctx: StockSelector(ctx.session).analytics(since),
        )

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def bulk_action(self, command: BulkAction) -> OperationResult:
        def body(ctx: CallContext):
            result = BulkActionService(ctx.session, self._clock, self._policy).execute(
                command, ctx.actor_id
            )
            if result.action != BulkActionType.ASSIGN_DELIVERY:
                for order_id in result.affected_ids:
                    self._notify_status(ctx, load_order(ctx.session, order_id).to_dto())
            return result

        return self._run("bulk_action", body, message="Bulk action applied")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def order_detail(self, order_id: UUID) -> OperationResult:
        def body(ctx: CallContext):
            detail = OrderSelector(ctx.session).get_detail(order_id)
            if not ctx.principal.is_operator and detail.order.owner_id != ctx.actor_id:
                raise AuthorizationError(
                    f"Order {order_id} does not belong to the requester",
                    actor_id=str(ctx.actor_id),
                )
            return detail

        return self._run("order_detail", body, roles={Role.REQUESTER, Role.OPERATOR})

    def tracking_timeline(self, order_id: UUID) -> OperationResult:
        def body(ctx: CallContext):
            owner = None if ctx.principal.is_operator else ctx.actor_id
            return OrderSelector(ctx.session).tracking_timeline(order_id, owner_id=owner)

        return self._run("tracking_timeline", body, roles={Role.REQUESTER, Role.OPERATOR})

    def list_orders(self, filters: OrderFilter | None = None, page: int = 1, limit: int = 20) -> OperationResult:
        return self._run(
            "list_orders",
            lambda ctx: OrderSelector(ctx.session).list_orders(filters, page=page, limit=limit),
        )

    def my_orders(self, page: int = 1, limit: int = 20) -> OperationResult:
        def body(ctx: CallContext):
            load_owner(ctx.session, ctx.actor_id)
            return OrderSelector(ctx.session).list_orders(
                OrderFilter(owner_id=ctx.actor_id), page=page, limit=limit
            )

        return self._run("my_orders", body, roles=REQUESTER_ONLY)

    def payment_reviews(self) -> OperationResult:
        return self._run(
            "payment_reviews",
            lambda ctx: OrderSelector(ctx.session).pending_payment_reviews(),
        )

    def order_stats(
        self,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> OperationResult:
        return self._run(
            "order_stats",
            lambda ctx: OrderSelector(ctx.session).stats(date_from, date_to),
        )

    def delivery_stats(self, day: date | None = None) -> OperationResult:
        return self._run(
            "delivery_stats",
            lambda ctx: CourierSelector(ctx.session).delivery_stats(day or self._clock.today()),
        )

    def audit_ledgers(self) -> OperationResult:
        def body(ctx: CallContext):
            auditor = LedgerAuditor(ctx.session)
            allowances = auditor.audit_all_allowances()
            stock = auditor.audit_stock()
            return {
                "allowance_discrepancies": [r for r in allowances if not r.is_consistent],
                "owners_checked": len(allowances),
                "stock": stock,
                "stock_consistent": stock.is_consistent,
            }

        return self._run("audit_ledgers", body)
