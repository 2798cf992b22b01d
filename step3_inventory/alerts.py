"""
Threshold alert evaluation for category groups
"""

import logging
from datetime import datetime
from typing import Optional

from step1_extract.models import CategoryGroup, InventoryAlert

logger = logging.getLogger(__name__)


def calculate_severity(current_level: float, threshold: float, alert_type: str) -> str:
    """
    Severity of an alert

    Args:
        current_level: Inventory level after the change
        threshold: Group minimum threshold
        alert_type: 'low_stock', 'zero_stock' or 'negative_stock'

    Returns:
        'low', 'medium', 'high' or 'critical'
    """
    if alert_type == 'negative_stock':
        return 'critical'

    if alert_type == 'zero_stock':
        if threshold >= 100:
            return 'critical'
        if threshold >= 10:
            return 'high'
        return 'medium'

    if threshold <= 0:
        return 'high'
    ratio = current_level / threshold
    if ratio <= 0.1:
        return 'high'
    if ratio <= 0.25:
        return 'medium'
    return 'low'


def alert_type_for_level(current_level: float, threshold: float) -> Optional[str]:
    """Alert type for a level, None when the level is above threshold"""
    if current_level < 0:
        return 'negative_stock'
    if current_level == 0:
        return 'zero_stock'
    if current_level <= threshold:
        return 'low_stock'
    return None


def evaluate_threshold(store, group: CategoryGroup, new_level: float) -> Optional[InventoryAlert]:
    """
    Raise or resolve alerts for a group after its level changed

    Keeps at most one active alert per (group, alert type); a level back
    above threshold resolves the group's active alerts.

    Returns:
        The alert created, or None
    """
    alert_type = alert_type_for_level(new_level, group.minimum_threshold)
    active = store.get_active_alerts(group.id)

    if alert_type is None:
        for alert in active:
            store.resolve_alert(alert.id)
            logger.info(f"Resolved {alert.alert_type} alert for group {group.id}")
        return None

    for alert in active:
        if alert.alert_type != alert_type:
            store.resolve_alert(alert.id)
    if any(alert.alert_type == alert_type for alert in active):
        return None

    alert = store.create_alert(InventoryAlert(
        category_group_id=group.id,
        alert_type=alert_type,
        current_level=new_level,
        threshold_level=group.minimum_threshold,
        unit=group.inventory_unit,
        severity=calculate_severity(new_level, group.minimum_threshold, alert_type),
        created_at=datetime.now().isoformat(),
    ))
    logger.warning(f"{alert.severity} {alert_type} alert for group {group.id}: level {new_level}{group.inventory_unit}")
    return alert
