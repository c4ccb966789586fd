"""
Error taxonomy

ValidationFailed   - malformed event or request, nothing is mutated
PreconditionFailed - order/profile state forbids the operation
IssuerError        - the clearinghouse call failed (transient and permanent look alike)
"""


class BridgeError(Exception):
    """Base class for errors surfaced to callers"""


class ValidationFailed(BridgeError):
    pass


class PreconditionFailed(BridgeError):
    pass


class NotFound(PreconditionFailed):
    pass


class InvalidTransition(PreconditionFailed):
    def __init__(self, current: str, event: str):
        super().__init__(f"Cannot apply {event} to an order in status {current}")
        self.current = current
        self.event = event


class IssuerError(BridgeError):
    pass


class IssuerTimeout(IssuerError):
    pass
