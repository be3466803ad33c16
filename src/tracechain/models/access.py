"""Access-control data models."""

from __future__ import annotations

import enum


class Role(str, enum.Enum):
    """Roles recognised by AccessControl.

    ADMIN manages every other role and the pause switch. The remaining
    roles each unlock one family of privileged entry points.
    """
    ADMIN = "admin"
    ARBITER = "arbiter"
    PROCESSOR = "processor"
    DISTRIBUTOR = "distributor"
    CERTIFIER = "certifier"
    COMPLIANCE_OFFICER = "compliance_officer"
    FACTORY = "factory"
