"""Prometheus collector exposing session activity.

Reports token lifetime, authentication counts and request counts from a
:class:`~.session.Session` without ever triggering authentication.
"""

from collections.abc import Iterator

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

from .session import Session


class SessionCollector(Collector):
    """Prometheus collector for one session."""

    def __init__(self, session: Session, metric_prefix: str = "openstack_session"):
        """Initialize the collector.

        Args:
            session: Session to report on.
            metric_prefix: Metric name prefix.
        """
        self._session = session
        self._prefix = metric_prefix

    def collect(self) -> Iterator[Metric]:
        """Collect session metrics for a Prometheus scrape.

        Yields:
            Token expiry gauge, authentication counters and request counter.
        """
        token = self._session.current_token
        expires_in = GaugeMetricFamily(
            f"{self._prefix}_token_expires_in_seconds",
            "seconds until the current token expires, -1 if there is no token",
        )
        expires_in.add_metric([], token.expires_in() if token is not None else -1.0)
        yield expires_in

        stats = self._session.stats
        authentications = CounterMetricFamily(
            f"{self._prefix}_authentications",
            "successful authentications with the identity service",
        )
        authentications.add_metric([], stats.authentications)
        yield authentications

        auth_errors = CounterMetricFamily(
            f"{self._prefix}_authentication_errors",
            "failed authentications with the identity service",
        )
        auth_errors.add_metric([], stats.authentication_errors)
        yield auth_errors

        requests = CounterMetricFamily(
            f"{self._prefix}_requests",
            "service requests by service type and response status",
            labels=["service_type", "status"],
        )
        for (service_type, status), count in sorted(stats.requests().items()):
            requests.add_metric([service_type, status], count)
        yield requests
