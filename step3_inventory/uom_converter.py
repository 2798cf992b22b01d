#!/usr/bin/env python3
"""
UoM Converter - Unit handling for inventory deduction
Applies conversion rules from 30_uom_conversion.yaml
Count pools (pcs) only accept counts; weight pools convert between kg and g
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_UNITS = {
    'pcs': {'inventory_type': 'qty', 'factor': 1},
    'g': {'inventory_type': 'weight', 'factor': 1},
    'kg': {'inventory_type': 'weight', 'factor': 1000},
}


class UoMConverter:
    """Convert deduction quantities into a category group's unit"""

    def __init__(self, rule_loader=None):
        """
        Initialize UoM converter

        Args:
            rule_loader: Optional RuleLoader; built-in kg/g/pcs table when omitted
        """
        rules: Dict[str, Any] = rule_loader.get_uom_conversion_rules() if rule_loader else {}
        self.units: Dict[str, Dict[str, Any]] = rules.get('units') or DEFAULT_UNITS
        self.default_unit = rules.get('default_unit', 'pcs')

    def normalize_unit(self, unit: Optional[str]) -> str:
        return (unit or self.default_unit).strip().lower()

    def inventory_type(self, unit: Optional[str]) -> Optional[str]:
        config = self.units.get(self.normalize_unit(unit))
        return config.get('inventory_type') if config else None

    def are_compatible(self, item_unit: Optional[str], group_unit: Optional[str]) -> bool:
        """Units are compatible when both are known and measure the same thing"""
        item_type = self.inventory_type(item_unit)
        return item_type is not None and item_type == self.inventory_type(group_unit)

    def convert(self, quantity: float, from_unit: Optional[str], to_unit: Optional[str]) -> float:
        """
        Convert a quantity between compatible units

        Raises:
            ValueError: when the units are unknown or incompatible
        """
        source, target = self.normalize_unit(from_unit), self.normalize_unit(to_unit)
        if source == target:
            return float(quantity)
        if not self.are_compatible(source, target):
            raise ValueError(f"Cannot convert {source} to {target}")
        factor = float(self.units[source]['factor']) / float(self.units[target]['factor'])
        return float(quantity) * factor
