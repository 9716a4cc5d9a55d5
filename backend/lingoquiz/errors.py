"""Domain errors raised by services.

Each error carries the HTTP status the API layer should answer with;
`main.py` renders them into the standard `{success, message}` envelope.
"""


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(ServiceError):
    status_code = 400


class UnauthorizedError(ServiceError):
    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


def ensure_owner(owner_id: int, user_id: int, action: str):
    """Raise `ForbiddenError` unless `user_id` owns the resource.

    `action` completes the message, e.g. "update this quiz".
    """
    if owner_id != user_id:
        raise ForbiddenError(f"Not authorized to {action}")
