"""Standard log field names and error categories used across the service."""

from enum import Enum


class ErrorCategory(str, Enum):
    """Error classes used to group failures in the log service."""

    # Internal bugs, resource exhaustion, unexpected exceptions
    SYSTEM_INTERNAL = "system_internal"
    # Automation setup failures: init, configuration, interrupted flows
    MIDSCENE_FLOW = "midscene_flow"
    # Automation step failures: element not found, AI recognition, timeouts
    MIDSCENE_EXECUTION = "midscene_exec"
    # Invalid parameters or malformed requests
    CLIENT_INPUT = "client_input"
    # Dropped connections, timeouts, network problems
    CONNECTION = "connection"
    # Object storage, database and other third-party services
    DEPENDENCY = "dependency"


class LogFields:
    """Field names shared by every structured log record."""

    TRACE_ID = "traceId"
    REQUEST_ID = "requestId"

    MESSAGE_ID = "messageId"
    CONVERSATION_ID = "conversationId"
    CONNECTION_ID = "connectionId"
    CLIENT_TYPE = "clientType"

    EVENT_TYPE = "eventType"
    ACTION = "action"

    COMMAND_ACTION = "commandAction"
    COMMAND_PARAMS = "commandParams"
    COMMAND_ORIGIN = "commandOrigin"

    DURATION_MS = "durationMs"

    ERROR = "error"
    ERROR_CATEGORY = "errorCategory"
    ERROR_CODE = "errorCode"

    STATUS = "status"
    RETRY_COUNT = "retryCount"
