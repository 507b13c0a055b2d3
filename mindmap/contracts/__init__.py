"""
Contracts Module

This module defines the explicit value types and error taxonomy that
form the contracts between layers. All inter-layer communication
MUST use these contracts. No layer may import implementation details
from another layer.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses / named tuples)
2. All contracts include explicit error states
3. Cross-references are identifier lookups, never object pointers
4. All timestamps use UTC and are never mutated
5. Hash-based identity for deduplication and determinism verification
"""
