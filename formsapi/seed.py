"""Reference data every installation needs, plus the optional demo accounts."""
import logging
from typing import Dict, List

import sqlalchemy
from sqlalchemy.ext.asyncio import AsyncConnection

from formsapi.database import department_table, form_table, user_table
from formsapi.models.user import Company, Role
from formsapi.security import get_password_hash

logger = logging.getLogger(__name__)

FORMS = [
    {
        "name": "Customer Rejection",
        "slug": "customer-rejection",
        "description": "Customer complaint and rejection report routed through department review, "
                       "sales, executive and finance approval.",
    },
]

DEPARTMENTS = [
    "Converting",
    "Corrugator",
    "Pre-Production",
    "Ink",
    "Quality",
    "Sales",
    "Design",
    "Packing",
    "Logistics/Shipping",
]

DEMO_PASSWORD = "demo123"
DEMO_USERS: List[Dict[str, str]] = [
    {"full_name": "Demo Admin", "username": "admin", "designation": "System Administrator", "role": Role.admin.value},
    {"full_name": "Demo User", "username": "demo", "designation": "Employee", "role": Role.employee.value},
    {"full_name": "Sales Director", "username": "ras", "designation": "Sales Director", "role": Role.employee.value},
    {"full_name": "CEO", "username": "hoz", "designation": "Chief Executive Officer", "role": Role.ceo.value},
    {"full_name": "Finance Manager", "username": "mda", "designation": "Finance Manager", "role": Role.employee.value},
    {"full_name": "NRA Officer", "username": "nra", "designation": "NRA Officer", "role": Role.employee.value},
]


async def seed_reference_data(conn: AsyncConnection) -> None:
    existing = {row.slug for row in await conn.execute(sqlalchemy.select(form_table.c.slug))}
    for form in FORMS:
        if form["slug"] not in existing:
            await conn.execute(form_table.insert().values(**form))
            logger.info(f"Seeded form template {form['slug']}")

    existing = {row.name for row in await conn.execute(sqlalchemy.select(department_table.c.name))}
    missing = [name for name in DEPARTMENTS if name not in existing]
    for name in missing:
        await conn.execute(department_table.insert().values(name=name))
    if missing:
        logger.info(f"Seeded {len(missing)} departments")


async def create_demo_users(conn: AsyncConnection) -> List[str]:
    """Create the demo accounts, resetting the ones that already exist."""
    password_hash = get_password_hash(DEMO_PASSWORD)
    usernames = [u["username"] for u in DEMO_USERS]
    result = await conn.execute(
        sqlalchemy.select(user_table.c.username).where(user_table.c.username.in_(usernames))
    )
    existing = {row.username for row in result}

    for user in DEMO_USERS:
        values = dict(user, company=Company.demo_company.value, password_hash=password_hash)
        if user["username"] in existing:
            query = user_table.update().where(user_table.c.username == user["username"]).values(**values)
        else:
            query = user_table.insert().values(**values)
        logger.debug(query)
        await conn.execute(query)

    logger.info(f"Demo users ready: {', '.join(usernames)}")
    return usernames
