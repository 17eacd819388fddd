"""
Open field scenario (v1): no obstacles.
"""
from __future__ import annotations
from typing import Any, Dict, Optional
from .base_scenario import generate_open_field

def make_scenario_spec(seed: int, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return generate_open_field(seed, params)
