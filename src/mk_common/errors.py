"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth
  2xxx: Order / state machine preconditions
  3xxx: Payout
  4xxx: Webhook
  5xxx: Notification
  9xxx: System

Precondition errors (2xxx, 3001, 3002) carry messages that are safe to show
to end users verbatim. Gateway failures are reported with generic text; the
raw gateway payload stays on the payout log.
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Invalid or expired token", 401)


class ServiceTokenError(AppError):
    def __init__(self) -> None:
        super().__init__(1002, "Service token required", 403)


# --- 2xxx: Order ---

class OrderNotFoundError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(2001, f"Order not found: {order_id}", 404)


class UnauthorizedActionError(AppError):
    def __init__(self, order_id: str, action: str) -> None:
        super().__init__(2002, f"You are not allowed to {action} order {order_id}", 403)


class InvalidStateError(AppError):
    def __init__(self, order_id: str, action: str, status: str) -> None:
        super().__init__(2003, f"Order {order_id} cannot {action} while {status}", 409)


class CommitWindowExpiredError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(
            2004,
            f"Commit window expired for order {order_id} (48 hours have passed)",
            422,
        )


# --- 3xxx: Payout ---

class AlreadyProcessedError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(3001, f"Payout already in progress or completed for order {order_id}", 409)


class BankingDetailsMissingError(AppError):
    def __init__(self, seller_id: str) -> None:
        super().__init__(
            3002,
            f"Seller {seller_id} must complete banking setup before receiving payouts",
            422,
        )


class PayoutFailedError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(
            3003,
            f"Payout for order {order_id} could not be initiated; it has been recorded for retry",
            502,
        )


# --- 4xxx: Webhook ---

class InvalidWebhookSignatureError(AppError):
    def __init__(self) -> None:
        super().__init__(4001, "Invalid webhook signature", 401)


class MalformedWebhookError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4002, f"Malformed webhook payload: {detail}", 400)


# --- 5xxx: Notification ---

class NotificationNotFoundError(AppError):
    def __init__(self, notification_id: int) -> None:
        super().__init__(5001, f"Notification not found: {notification_id}", 404)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class PaymentGatewayError(Exception):
    """Raised by the gateway client; never surfaced to end users.

    ``payload`` keeps whatever the gateway answered (or the transport error
    text) so it can be stored on the payout log / order for diagnosis.
    """

    def __init__(self, message: str, status_code: int | None = None,
                 payload: dict[str, object] | None = None) -> None:
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)
