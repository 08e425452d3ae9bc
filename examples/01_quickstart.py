#!/usr/bin/env python3
"""Example: Quickstart for careguard

Minimal working example: add family members, grant privacy permissions,
issue a magic link to a provider, seal a payload, and review the audit
trail.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install careguard
"""
from __future__ import annotations

import careguard as cg


def main() -> None:
    print(f"careguard version: {cg.__version__}")

    # Step 1: Build an in-memory stack and add family members
    stack = cg.Careguard()
    child = cg.AccessScope("fam-1", "child-1")
    stack.add_member("fam-1", "parent-1", "parent", invited_by="parent-1")
    stack.add_member("fam-1", "nanny-1", "caregiver", invited_by="parent-1")
    stack.add_member("fam-1", "grandma-1", "viewer", invited_by="parent-1")
    stack.grant("nanny-1", child, [cg.PrivacyPermission.VIEW_VITALS], granted_by="parent-1")

    # Step 2: Decide access for each member
    requests = [
        ("parent-1", cg.AccessRequirement.for_data("vitals", "edit")),
        ("nanny-1", cg.AccessRequirement.for_data("vitals", "view")),
        ("nanny-1", cg.AccessRequirement.for_data("notes", "view")),
        ("grandma-1", cg.AccessRequirement(permissions=frozenset({"write_data"}))),
    ]

    print("\nAccess decisions:")
    for principal, requirement in requests:
        decision = stack.can(principal, requirement, child)
        icon = "ALLOW" if decision.allowed else "DENY"
        print(f"  [{icon}] {principal} -> {requirement.describe()}")
        if decision.reason is not None:
            print(f"    Reason: {decision.reason.value}")

    # Step 3: Issue a single-use magic link to a provider
    link = stack.tokens.create(
        scope=child,
        provider="Dr. Rivera",
        permissions=[cg.MagicLinkPermission.VIEW_VITALS],
        created_by="parent-1",
        expires_in_hours=24,
        max_access_count=1,
    )
    print(f"\nMagic link {link.id} issued ({link.token_fingerprint})")
    for attempt in (1, 2):
        decision = stack.guard.decide_with_token(link.access_token, ["view_vitals"])
        outcome = "accepted" if decision else decision.reason.value  # type: ignore[union-attr]
        print(f"  Attempt {attempt}: {outcome}")

    # Step 4: Seal a payload for the provider
    secret = stack.engine.generate_secure_key()
    sealed = stack.envelope.seal({"heart_rate": 92}, recipient_secret=secret)
    print(f"\nSealed envelope: {len(sealed)} characters")
    print(f"Opened payload: {stack.envelope.open(sealed, recipient_secret=secret)}")

    # Step 5: Review the audit trail
    records = stack.audit.read_all()
    print(f"\nAudit log: {len(records)} entries")
    for record in records:
        print(f"  [{record['outcome']}] {record['principal_id']} | {record['requirement']}")


if __name__ == "__main__":
    main()
