"""One-shot price and system alerts"""

import inspect
import operator
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from swaprouter.monitoring import metrics
from swaprouter.monitoring.models import SystemMetrics
from swaprouter.utils.events import ALERT_TRIGGERED, EventChannel

logger = structlog.get_logger()

AlertCallback = Callable[[Any], Any]


class AlertKind(str, Enum):
    PRICE = "price"
    SYSTEM = "system"


class PriceCondition(str, Enum):
    """Price alert trigger conditions"""

    ABOVE = "ABOVE"  # price > target
    BELOW = "BELOW"  # price < target
    PERCENT_CHANGE = "PERCENT_CHANGE"  # |price - reference| / reference * 100 >= |target|


SYSTEM_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
}

SYSTEM_METRICS = ("cache_hit_rate", "api_latency", "error_rate", "active_transactions")


@dataclass
class Alert:
    id: str
    kind: AlertKind
    callback: AlertCallback
    created_at: float
    token: Optional[str] = None
    condition: Optional[PriceCondition] = None
    target: Optional[Decimal] = None
    reference_price: Optional[Decimal] = None
    metric: Optional[str] = None
    operator: Optional[str] = None
    threshold: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> Dict[str, Any]:
        if self.kind == AlertKind.PRICE:
            return {
                "id": self.id,
                "kind": self.kind.value,
                "token": self.token,
                "condition": self.condition.value if self.condition else None,
                "target": str(self.target),
                "reference_price": str(self.reference_price) if self.reference_price is not None else None,
            }
        return {
            "id": self.id,
            "kind": self.kind.value,
            "metric": self.metric,
            "operator": self.operator,
            "threshold": self.threshold,
        }


class AlertManager:
    """
    Registry of alerts that fire at most once.

    A triggered alert is removed before its callback runs, so a callback
    that raises does not leave the alert armed.
    """

    def __init__(
        self,
        events: Optional[EventChannel] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.events = events or EventChannel("alerts")
        self._alerts: Dict[str, Alert] = {}
        self._clock = clock
        self._logger = logger.bind(component="alert_manager")

    def _new_id(self, kind: AlertKind) -> str:
        return f"{kind.value}_alert_{uuid.uuid4().hex[:12]}"

    def add_price_alert(
        self,
        token: str,
        condition: Union[PriceCondition, str],
        target: Union[Decimal, int, float, str],
        callback: AlertCallback,
        reference_price: Optional[Union[Decimal, int, float, str]] = None,
    ) -> str:
        """
        Register a price alert.

        Args:
            token: Token the price observations refer to
            condition: ABOVE, BELOW or PERCENT_CHANGE
            target: Price level, or percentage for PERCENT_CHANGE
            callback: Called once with the triggering observation
            reference_price: Base price for PERCENT_CHANGE; defaults to the
                first observed price

        Returns:
            Alert id
        """
        alert = Alert(
            id=self._new_id(AlertKind.PRICE),
            kind=AlertKind.PRICE,
            callback=callback,
            created_at=self._clock(),
            token=token,
            condition=PriceCondition(condition),
            target=Decimal(str(target)),
            reference_price=Decimal(str(reference_price)) if reference_price is not None else None,
        )
        self._alerts[alert.id] = alert
        self._logger.info("price_alert_added", **alert.describe())
        return alert.id

    def add_system_alert(
        self,
        metric: str,
        operator: str,
        threshold: float,
        callback: AlertCallback,
    ) -> str:
        """
        Register an alert on a SystemMetrics field.

        Raises:
            ValueError: Unknown metric or operator
        """
        if metric not in SYSTEM_METRICS:
            raise ValueError(f"Unknown system metric: {metric}")
        if operator not in SYSTEM_OPERATORS:
            raise ValueError(f"Unsupported operator: {operator}")

        alert = Alert(
            id=self._new_id(AlertKind.SYSTEM),
            kind=AlertKind.SYSTEM,
            callback=callback,
            created_at=self._clock(),
            metric=metric,
            operator=operator,
            threshold=threshold,
        )
        self._alerts[alert.id] = alert
        self._logger.info("system_alert_added", **alert.describe())
        return alert.id

    def remove_alert(self, alert_id: str) -> bool:
        """Cancel an alert; returns False if it was unknown or already fired"""
        return self._alerts.pop(alert_id, None) is not None

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        return self._alerts.get(alert_id)

    def alerts(self, kind: Optional[AlertKind] = None) -> List[Alert]:
        return [a for a in self._alerts.values() if kind is None or a.kind == kind]

    def __len__(self) -> int:
        return len(self._alerts)

    def _price_triggered(self, alert: Alert, price: Decimal) -> bool:
        if alert.condition == PriceCondition.ABOVE:
            return price > alert.target
        if alert.condition == PriceCondition.BELOW:
            return price < alert.target

        if alert.reference_price is None:
            alert.reference_price = price
            return False
        if alert.reference_price == 0:
            return False
        change = abs((price - alert.reference_price) / alert.reference_price * 100)
        return change >= abs(alert.target)

    async def on_price(self, token: str, price: Union[Decimal, int, float, str]) -> List[str]:
        """
        Evaluate price alerts for a fresh observation.

        Returns:
            Ids of the alerts that fired
        """
        observed = Decimal(str(price))
        fired = []
        for alert in self.alerts(AlertKind.PRICE):
            if alert.token != token:
                continue
            if self._price_triggered(alert, observed) and self._claim(alert):
                await self._trigger(alert, {"token": token, "price": observed, "timestamp": self._clock()})
                fired.append(alert.id)
        return fired

    async def check_system_alerts(self, snapshot: SystemMetrics) -> List[str]:
        """Evaluate system alerts against a metrics snapshot"""
        fired = []
        for alert in self.alerts(AlertKind.SYSTEM):
            value = getattr(snapshot, alert.metric)
            if SYSTEM_OPERATORS[alert.operator](value, alert.threshold) and self._claim(alert):
                await self._trigger(alert, snapshot)
                fired.append(alert.id)
        return fired

    def _claim(self, alert: Alert) -> bool:
        # Earlier callbacks may have fired or cancelled it while this pass was awaiting
        return self._alerts.pop(alert.id, None) is not None

    async def _trigger(self, alert: Alert, payload: Any) -> None:
        metrics.alerts_triggered.labels(kind=alert.kind.value).inc()
        self._logger.info("alert_triggered", **alert.describe())

        try:
            result = alert.callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._logger.error(
                "alert_callback_failed",
                alert_id=alert.id,
                error=str(e),
                error_type=type(e).__name__,
            )

        self.events.emit(
            ALERT_TRIGGERED,
            {"alert": alert.describe(), "payload": payload, "timestamp": self._clock()},
        )
