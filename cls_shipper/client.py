"""CLS client — wire model for log groups and an HTTP submitter with bounded retry."""

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from cls_shipper.errors import CLSTransportError
from cls_shipper.models import LogEntry

logger = logging.getLogger(__name__)

RETRY_STATUSES = (429, 500, 502, 503, 504)


@dataclass
class Log:
    """One wire record: a timestamp in whole seconds and string key/value contents."""

    time: int
    contents: dict[str, str] = field(default_factory=dict)

    def add_content(self, key: str, value) -> None:
        self.contents[str(key)] = _stringify(value)


@dataclass
class LogGroup:
    """A named group of records submitted in a single request."""

    source: str
    logs: list[Log] = field(default_factory=list)
    filename: Optional[str] = None
    log_tags: dict[str, str] = field(default_factory=dict)

    def add_log(self, log: Log) -> None:
        self.logs.append(log)

    def to_dict(self) -> dict:
        body: dict = {
            "source": self.source,
            "logs": [{"time": log.time, "contents": log.contents} for log in self.logs],
        }
        if self.filename:
            body["filename"] = self.filename
        if self.log_tags:
            body["logTags"] = [
                {"key": key, "value": value} for key, value in self.log_tags.items()
            ]
        return body


def _stringify(value) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, default=str, ensure_ascii=False, skipkeys=True)
        except (TypeError, ValueError, RecursionError):
            return str(value)
    return str(value)


def build_log_group(
    entries: list[LogEntry],
    source: str = "midscene-server",
    append_fields_fn: Optional[Callable[[], dict]] = None,
    log_tags: Optional[dict] = None,
) -> LogGroup:
    """Translate a batch of entries into one LogGroup, preserving order.

    Contents are added as level, message, module, then every ``data`` item,
    then every appended field; a later key overwrites an earlier one.
    Absent fields are omitted.
    """
    group = LogGroup(source=source, log_tags={k: _stringify(v) for k, v in (log_tags or {}).items()})

    for entry in entries:
        log = Log(time=int(entry.timestamp // 1000))

        if entry.level is not None:
            log.add_content("level", entry.level)
        if entry.message is not None:
            log.add_content("message", entry.message)
        if entry.module:
            log.add_content("module", entry.module)

        if entry.data:
            for key, value in entry.data.items():
                log.add_content(key, value)

        if append_fields_fn is not None:
            for key, value in append_fields_fn().items():
                log.add_content(key, value)

        group.add_log(log)

    return group


def _base_url(endpoint: str) -> str:
    endpoint = endpoint.strip().rstrip("/")
    if not endpoint.startswith(("http://", "https://")):
        endpoint = f"https://{endpoint}"
    return endpoint


class CLSClient:
    """Submits log groups to a CLS endpoint over HTTP.

    Retries (connection errors and 429/5xx answers, exponential backoff) are
    delegated to urllib3 through the session's adapter, so ``put_logs`` either
    succeeds or raises once they are exhausted.
    """

    def __init__(
        self,
        endpoint: str,
        retry_count: int = 2,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self._url = f"{_base_url(endpoint)}/tracklog"
        self._timeout = timeout
        self._session = session or requests.Session()

        retry = Retry(
            total=retry_count,
            connect=retry_count,
            read=retry_count,
            status=retry_count,
            backoff_factor=0.5,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset(["POST"]),
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    @property
    def url(self) -> str:
        return self._url

    def put_logs(self, topic_id: str, log_group: LogGroup) -> None:
        """POST one log group to *topic_id*. Raises CLSTransportError on failure."""
        try:
            response = self._session.post(
                self._url,
                params={"topic_id": topic_id},
                json=log_group.to_dict(),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise CLSTransportError(f"PutLogs to {self._url} failed: {exc}") from exc

        if response.status_code >= 300:
            raise CLSTransportError(
                f"PutLogs to {self._url} rejected with HTTP {response.status_code}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )

        logger.debug(
            "Submitted %d log(s) to topic %s", len(log_group.logs), topic_id
        )

    def close(self):
        """Close the underlying HTTP session."""
        self._session.close()
