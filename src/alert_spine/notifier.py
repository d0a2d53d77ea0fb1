"""Webhook notifier.

Manifesto:
    Delivery is best effort.  The notifier only reports success or failure;
    the result store turns a failure into a persisted ERROR so it shows up
    in the alert history instead of disappearing into a log line.

Posts an ``application/x-www-form-urlencoded`` form per state change:

    group          dashica_<id_group>
    id             <group>#<key>
    state          NORMAL | WARNING | ERROR
    message        result message
    slack_channel  only when the definition sets one

Tags:
    notifier, webhook, httpx, alerting, alert-spine

Doc-Types:
    api-reference
"""

from __future__ import annotations

from functools import partial

import httpx
import structlog

from alert_spine.errors import NotifierError
from alert_spine.models import AlertDefinition, AlertResult, AlertState
from alert_spine.protocols import Notifier

logger = structlog.get_logger(__name__)

GROUP_PREFIX = "dashica_"

_STATE_NAMES = {
    AlertState.OK.value: "NORMAL",
    AlertState.WARN.value: "WARNING",
}


def external_state(state: str) -> str:
    """Map an alert state to the receiver's vocabulary (anything unknown is ERROR)."""
    return _STATE_NAMES.get(state, "ERROR")


def no_notification() -> None:
    """Notifier that does nothing; used by backfill."""


class WebhookNotifier:
    """POSTs state changes to an alerting webhook.

    An empty URL disables delivery: :meth:`notify` logs a warning and
    returns successfully.
    """

    def __init__(
        self,
        url: str,
        id_group: str = "",
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.id_group = id_group
        self._client = client or httpx.Client(timeout=timeout)

    def form_for(self, definition: AlertDefinition, result: AlertResult) -> dict[str, str]:
        form = {
            "group": GROUP_PREFIX + self.id_group,
            "id": str(definition.id),
            "state": external_state(result.state),
            "message": result.message,
        }
        if definition.notify_channel:
            form["slack_channel"] = definition.notify_channel
        return form

    def notify(self, definition: AlertDefinition, result: AlertResult) -> None:
        """Send one notification.

        Raises:
            NotifierError: On a transport failure or a non-200 response.
        """
        if not self.url:
            logger.warning("notifier.skipped", reason="no webhook url configured", alert_id=str(definition.id))
            return

        try:
            response = self._client.post(self.url, data=self.form_for(definition, result))
        except httpx.HTTPError as e:
            raise NotifierError(f"failed to send request: {e}", cause=e).with_context(
                alert_id=str(definition.id)
            ) from e

        if response.status_code != 200:
            raise NotifierError(
                f"request failed with status {response.status_code}: {response.text}"
            ).with_context(alert_id=str(definition.id), http_status=response.status_code)

        logger.info("notifier.sent", alert_id=str(definition.id), state=result.state)

    def bind(self, definition: AlertDefinition, result: AlertResult) -> Notifier:
        """Zero-argument callable for :meth:`ResultStore.persist_and_notify_if_changed`."""
        return partial(self.notify, definition, result)

    def close(self) -> None:
        self._client.close()


__all__ = ["GROUP_PREFIX", "WebhookNotifier", "external_state", "no_notification"]
