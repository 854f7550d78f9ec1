"""
InfluxDB v2 write client.

Sends PublishBatches as line protocol over HTTP(S). A batch write is all or
nothing: publish() either returns (every point accepted) or raises.
"""
import logging
from typing import Optional

import requests

from .config import Config
from .errors import (
    AuthRejected,
    MalformedRequest,
    NetworkError,
    RateLimited,
    ServerBusy,
)
from .line_protocol import encode_metrics
from .models import PublishBatch


class InfluxPublisher:
    """
    Publisher for the InfluxDB /api/v2/write endpoint.

    Status mapping:
    - 2xx: accepted
    - 429: RateLimited (transient, honours Retry-After)
    - 5xx: ServerBusy (transient)
    - 401/403: AuthRejected (permanent)
    - other 4xx: MalformedRequest (permanent)
    - connection errors and timeouts: NetworkError (transient)
    """

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.config = config
        self.write_url = f"{config.influxdb_host}/api/v2/write"
        self.params = {
            "org": config.organization,
            "bucket": config.bucket,
            "precision": "ns",
        }
        self.timeout = config.request_timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"{config.auth_scheme} {config.token}",
            "Content-Type": "text/plain; charset=utf-8",
            "Accept": "application/json",
        })
        self.logger = logging.getLogger(self.__class__.__name__)

    def publish(self, batch: PublishBatch, timeout: Optional[float] = None) -> None:
        """
        Write one batch.

        Args:
            batch: Entries to send, in order
            timeout: Overrides the configured request timeout (seconds)

        Raises:
            TransientPublishError: NetworkError, ServerBusy or RateLimited
            PermanentPublishError: AuthRejected or MalformedRequest
        """
        if not batch:
            return

        body = encode_metrics(batch.metrics, self.config.measurement, self.config.tags)
        if not body:
            raise MalformedRequest(f"Batch {batch.batch_id} has no encodable points")

        try:
            response = self.session.post(
                self.write_url,
                params=self.params,
                data=body.encode("utf-8"),
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Write timed out: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"Cannot connect to {self.config.influxdb_host}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Write request failed: {e}") from e

        status = response.status_code
        if 200 <= status < 300:
            self.logger.debug(f"Wrote {len(batch)} points (batch {batch.batch_id})")
            return

        detail = _error_detail(response)
        if status == 429:
            raise RateLimited(
                f"Rate limited by InfluxDB: {detail}",
                status_code=status,
                retry_after=_retry_after(response),
            )
        if status >= 500:
            raise ServerBusy(
                f"InfluxDB server error HTTP {status}: {detail}",
                status_code=status,
                retry_after=_retry_after(response),
            )
        if status in (401, 403):
            raise AuthRejected(f"InfluxDB rejected credentials HTTP {status}: {detail}", status)
        raise MalformedRequest(f"InfluxDB rejected write HTTP {status}: {detail}", status)

    def close(self) -> None:
        self.session.close()


def _retry_after(response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        # HTTP-date form is not used by InfluxDB
        return None


def _error_detail(response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip()[:200] or "no detail"
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return str(payload)[:200]
