"""
Error taxonomy for the community service.

Each error carries a machine-readable ``kind`` and the HTTP status the API
layer answers with. The API never echoes a store failure's message.
"""


class CommunityError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class NotFoundError(CommunityError):
    kind = "not_found"
    status_code = 404


class UnauthorizedError(CommunityError):
    """Caller lacks creator/admin rights on the community."""

    kind = "unauthorized"
    status_code = 403


class ForbiddenError(CommunityError):
    """The action would break a community invariant (e.g. removing the creator)."""

    kind = "forbidden"
    status_code = 403


class InvalidStateError(CommunityError):
    kind = "invalid_state"
    status_code = 409


class StoreFailure(CommunityError):
    kind = "store_failure"
    status_code = 500

    def __init__(self, detail: str = "Document store unavailable"):
        super().__init__(detail)


class NotAuthenticatedError(CommunityError):
    """The request carries no caller identity."""

    kind = "not_authenticated"
    status_code = 401
