"""
Exception hierarchy for the scheduler
"""

from typing import Optional


class CardSchedulerError(Exception):
    """Base class for all scheduler errors"""


class TokenMissing(CardSchedulerError):
    """No usable access token is stored"""


class TokenEndpointError(CardSchedulerError):
    """The OAuth token endpoint rejected a request or could not be reached"""

    def __init__(self, status: Optional[int], body: str):
        self.status = status
        self.body = body
        super().__init__(f"Token endpoint error: {status} {body}")


class TokenRefreshFailed(TokenEndpointError):
    """Refresh-token grant failed"""


class TokenExchangeFailed(TokenEndpointError):
    """Authorization-code grant failed"""


class ScheduleNotFound(CardSchedulerError):
    """No schedule with the given id exists"""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule not found: {schedule_id}")


class ChannelUnavailable(CardSchedulerError):
    """The device channel is not connected or could not be opened"""


class ChannelPlayFailed(CardSchedulerError):
    """The device channel accepted the connection but the play command failed"""


class PersistenceFailure(CardSchedulerError):
    """The credential store could not be read or written"""


class DeviceApiError(CardSchedulerError):
    """Non-success response from the Device Control API"""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body
        super().__init__(f"Device API request failed: {status} {body}")
