"""
Shared fixtures for API integration tests.

WHY: Most endpoint tests need the same small organization: default SLA
policies, one team with a leader and two employees, an admin, and a
second organization whose data must never leak.
"""

from types import SimpleNamespace

import pytest_asyncio

from tests.factories import OrganizationFactory, SLAPolicyFactory, TeamFactory, UserFactory


@pytest_asyncio.fixture
async def helpdesk(db_session):
    org = await OrganizationFactory.create(db_session)
    await SLAPolicyFactory.create_defaults(db_session, org)
    team = await TeamFactory.create(db_session, org, name="Service Desk")
    other_team = await TeamFactory.create(db_session, org, name="Facilities")

    foreign_org = await OrganizationFactory.create(db_session)
    await SLAPolicyFactory.create_defaults(db_session, foreign_org)

    return SimpleNamespace(
        org=org,
        team=team,
        other_team=other_team,
        admin=await UserFactory.create_admin(db_session, org),
        leader=await UserFactory.create_leader(db_session, org, leads=[team]),
        employee=await UserFactory.create_employee(db_session, org, team=team),
        colleague=await UserFactory.create_employee(db_session, org, team=team),
        foreign_org=foreign_org,
        foreign_admin=await UserFactory.create_admin(db_session, foreign_org),
    )
