class AppError(Exception):
    """
    Base class for errors that map straight to an HTTP response.

    Rendered by the app-level handler as {"success": false, "error": "<message>"}.
    """
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class NotAuthorized(AppError):
    """
    Raised when a user is authenticated but does not own the resource
    (e.g. a provider billing another provider's prescription).

    Expected Result: 403 Forbidden
    """
    status_code = 403


class ResourceNotFound(AppError):
    status_code = 404


class InvalidTransition(AppError):
    """Raised when a status change is not allowed by the lifecycle table."""
    status_code = 409

    def __init__(self, current, target):
        super().__init__(
            f"Cannot move from '{getattr(current, 'value', current)}' "
            f"to '{getattr(target, 'value', target)}'",
            current=getattr(current, "value", current),
            target=getattr(target, "value", target),
        )


class PaymentValidationError(AppError):
    """Bad input or a payment link that can no longer be used."""
    status_code = 400


class PharmacyConfigurationError(AppError):
    """No active DigitalRx backend could be resolved."""
    status_code = 500


class PaymentConfigurationError(AppError):
    """No active Authorize.Net credentials, or keys that fail to decrypt."""
    status_code = 500


class WebhookSignatureError(AppError):
    status_code = 401


class DigitalRxError(AppError):
    """
    The pharmacy backend answered with a non-2xx, a non-JSON body
    or an explicit `Error` field.
    """
    status_code = 502


class AuthorizeNetError(AppError):
    status_code = 502


class NotificationError(AppError):
    """The email provider refused or never received the message."""
    status_code = 502


class InvalidRequest(AppError):
    """The request is well-formed but the resource is not in a usable state."""
    status_code = 400
