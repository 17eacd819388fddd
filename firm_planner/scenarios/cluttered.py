"""
Cluttered scenario (v1): random non-touching boxes.
"""
from __future__ import annotations
from typing import Any, Dict, Optional
from .base_scenario import generate_cluttered

def make_scenario_spec(seed: int, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return generate_cluttered(seed, params)
