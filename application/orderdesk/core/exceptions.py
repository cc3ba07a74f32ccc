"""
Domain exceptions raised by the workflow core and mapped to HTTP responses
in orderdesk.middlewares.handlers.
"""


class OrderDeskError(Exception):
    code = "ORDER_DESK_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTransition(OrderDeskError):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, message: str = None):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Invalid status transition: cannot change status from '{from_status}' to '{to_status}'"
        )


class ForbiddenTransition(InvalidTransition):
    """Transition exists but the acting role may not perform it."""
    code = "FORBIDDEN_TRANSITION"

    def __init__(self, from_status: str, to_status: str, role: str):
        self.role = role
        if from_status is None:
            message = f"Role '{role}' may not create orders in '{to_status}'"
        else:
            message = f"Role '{role}' may not change status from '{from_status}' to '{to_status}'"
        super().__init__(from_status, to_status, message)


class ValidationError(OrderDeskError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class ConflictError(OrderDeskError):
    code = "CONFLICT"

    def __init__(self, order_id: str, expected_version: int = None, actual_version: int = None):
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        if expected_version is not None and actual_version is not None:
            message = (
                f"Order {order_id} was modified concurrently "
                f"(expected version {expected_version}, found {actual_version}); refetch and retry"
            )
        else:
            message = f"Order {order_id} was modified concurrently; refetch and retry"
        super().__init__(message)


class ExternalServiceError(OrderDeskError):
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, reason: str):
        self.service = service
        self.reason = reason
        super().__init__(f"{service} failed: {reason}")


class OrderNotFound(OrderDeskError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")
