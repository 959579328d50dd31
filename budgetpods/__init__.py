"""
Pod Budget Assistant - Source Package

Turns plain-language messages from household members into proposed
budget actions against named pods, and commits accepted actions to
each pod's budgeted amount.

DESIGN PRINCIPLES:
1. Interpreter proposes -> Human confirms -> Ledger verifies
2. Ask instead of guessing when a pod name is ambiguous
3. The model is optional; the deterministic path always works
4. A batch is applied completely or not at all
5. Storage is an injected collaborator
"""

__version__ = "1.0.0"
__author__ = "Pod Budget Assistant Team"
