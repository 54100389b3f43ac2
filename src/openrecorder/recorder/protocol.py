"""Protocol method names consumed by the recorder.

Event dispatch is closed over :class:`ProtocolEvent`; anything the browser
sends that is not listed here is ignored at the dispatch boundary.
"""

from enum import Enum

# Ordered list of nested sub-target session ids, outermost first
SessionChain = tuple[str, ...]

ROOT_CHAIN: SessionChain = ()

SEND_MESSAGE_TO_TARGET = 'Target.sendMessageToTarget'


class ProtocolEvent(str, Enum):
    """Protocol events the recorder reacts to."""

    TARGET_ATTACHED = 'Target.attachedToTarget'
    TARGET_DETACHED = 'Target.detachedFromTarget'
    TARGET_MESSAGE = 'Target.receivedMessageFromTarget'

    REQUEST_WILL_BE_SENT = 'Network.requestWillBeSent'
    RESPONSE_RECEIVED = 'Network.responseReceived'
    RESPONSE_RECEIVED_EXTRA_INFO = 'Network.responseReceivedExtraInfo'
    LOADING_FINISHED = 'Network.loadingFinished'

    REQUEST_PAUSED = 'Fetch.requestPaused'

    FRAME_NAVIGATED = 'Page.frameNavigated'
    LOAD_EVENT_FIRED = 'Page.loadEventFired'
    NAVIGATED_WITHIN_DOCUMENT = 'Page.navigatedWithinDocument'

    DEBUGGER_PAUSED = 'Debugger.paused'

    @classmethod
    def parse(cls, method: str) -> 'ProtocolEvent | None':
        try:
            return cls(method)
        except ValueError:
            return None


def extend_chain(chain: SessionChain, session_id: str) -> SessionChain:
    """Return a new chain one level deeper; the caller's chain is never mutated."""
    return (*chain, session_id)
