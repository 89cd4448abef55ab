"""
Demo household for development.

One parent and two kids, a handful of chores, and today's assignments.
Loaded at startup when SEED_DEMO_HOUSEHOLD is on; tests load it too.

    parent@example.com / parentpassword123
    Alice (usr_alice)  PIN 1234
    Bob   (usr_bob)    PIN 5678
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from familypanel.auth.credentials import CredentialStore
from familypanel.core.models import Chore, ChoreAssignment, Principal, Role
from familypanel.core.utils import utc_now
from familypanel.storage.base import Collections, MetadataStorage

logger = logging.getLogger(__name__)

PARENT_EMAIL = "parent@example.com"
PARENT_PASSWORD = "parentpassword123"

# (id, name, email, pin, daily screen time)
KIDS = (
    ("usr_alice", "Alice Kid", "kid1@example.com", "1234", 120),
    ("usr_bob", "Bob Kid", "kid2@example.com", "5678", 90),
)

# (id, name, description, cents)
CHORES = (
    ("chore_make_bed", "Make Bed", "Make your bed neatly every morning", 50),
    ("chore_dishes", "Wash Dishes", "Wash and dry all dishes after dinner", 100),
    ("chore_trash", "Take Out Trash", "Take all trash bins to the curb", 75),
    ("chore_vacuum", "Vacuum Room", "Vacuum your bedroom thoroughly", 150),
    ("chore_feed_pet", "Feed Pet", "Feed the family pet and refill water", 25),
)

# kid id -> chore ids assigned today
ASSIGNMENTS = {
    "usr_alice": ("chore_make_bed", "chore_dishes", "chore_feed_pet"),
    "usr_bob": ("chore_trash", "chore_vacuum"),
}


@dataclass
class Household:
    parent: Principal
    kids: list[Principal]
    chores: list[Chore]
    assignments: list[ChoreAssignment]

    def assignments_for(self, principal_id: str) -> list[ChoreAssignment]:
        return [a for a in self.assignments if a.user_id == principal_id]


async def seed_household(credentials: CredentialStore, metadata: MetadataStorage) -> Household:
    """Provision the demo household into a fresh store."""
    parent = await credentials.create_principal(
        name="John Parent",
        email=PARENT_EMAIL,
        role=Role.PARENT,
        password=PARENT_PASSWORD,
        principal_id="usr_parent",
    )

    kids = []
    for kid_id, name, email, pin, minutes in KIDS:
        kid = await credentials.create_principal(
            name=name, email=email, role=Role.KID, pin=pin, principal_id=kid_id
        )
        await metadata.update(Collections.USERS, kid.id, {"screen_time_daily_minutes": minutes})
        kids.append(kid)

    chores = []
    for chore_id, name, description, cents in CHORES:
        chore = Chore(id=chore_id, name=name, description=description, monetary_value_cents=cents)
        await metadata.save(Collections.CHORES, chore.id, chore.model_dump(mode="json"))
        chores.append(chore)

    today = utc_now().date()
    assignments = []
    for kid_id, chore_ids in ASSIGNMENTS.items():
        for chore_id in chore_ids:
            assignment = ChoreAssignment(chore_id=chore_id, user_id=kid_id, assigned_date=today)
            await metadata.save(
                Collections.CHORE_ASSIGNMENTS, assignment.id, assignment.model_dump(mode="json")
            )
            assignments.append(assignment)

    logger.info(
        f"Seeded demo household: 1 parent, {len(kids)} kids, "
        f"{len(chores)} chores, {len(assignments)} assignments"
    )
    return Household(parent=parent, kids=kids, chores=chores, assignments=assignments)
