"""
SLA & Escalation Module
=======================

Bounded Context for support-ticket service levels.

Responsibilities:
- Stamp response/resolve budgets from the SLA policy table at creation
- Auto-assign new tickets to the least-loaded agent
- Detect SLA breaches on every mutation and on the periodic sweep
- Escalate priority on a fresh breach and alert via Slack
- Apply bulk operations with per-ticket failure isolation
"""

__version__ = "1.0.0"
