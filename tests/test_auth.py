"""Auth dependency tests — bearer validation and role checks."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from jose import jwt

from backend.auth.dependencies import has_role
from backend.common.constants import UserRole
from backend.config import settings
from tests.conftest import auth_headers_for, create_access_token, seed_employee

URL = "/api/v1/leave/preview"
BODY = {"start_date": "2025-03-12", "end_date": "2025-03-12"}


class TestRoleHierarchy:

    def test_higher_roles_include_lower(self):
        assert has_role(UserRole.system_admin, UserRole.hr_admin)
        assert has_role(UserRole.hr_admin, UserRole.manager)
        assert has_role(UserRole.manager, UserRole.employee)

    def test_lower_roles_exclude_higher(self):
        assert not has_role(UserRole.employee, UserRole.manager)
        assert not has_role(UserRole.manager, UserRole.hr_admin)


class TestBearerValidation:

    async def test_valid_token(self, client, db, test_employee):
        await db.commit()
        resp = await client.post(URL, json=BODY, headers=auth_headers_for(test_employee.id))
        assert resp.status_code == 200

    async def test_expired_token(self, client, db, test_employee):
        await db.commit()
        token = create_access_token(test_employee.id, expired=True)
        resp = await client.post(URL, json=BODY, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_wrong_signature(self, client, db, test_employee):
        await db.commit()
        token = jwt.encode(
            {
                "sub": str(test_employee.id),
                "type": "access",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            "not-the-secret",
            algorithm=settings.JWT_ALGORITHM,
        )
        resp = await client.post(URL, json=BODY, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_refresh_token_rejected(self, client, db, test_employee):
        await db.commit()
        token = jwt.encode(
            {
                "sub": str(test_employee.id),
                "type": "refresh",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        resp = await client.post(URL, json=BODY, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_unknown_subject(self, client):
        resp = await client.post(URL, json=BODY, headers=auth_headers_for(uuid.uuid4()))
        assert resp.status_code == 401

    async def test_inactive_employee(self, client, db):
        emp = await seed_employee(db)
        emp.is_active = False
        await db.commit()
        resp = await client.post(URL, json=BODY, headers=auth_headers_for(emp.id))
        assert resp.status_code == 401

    async def test_malformed_header(self, client):
        resp = await client.post(URL, json=BODY, headers={"Authorization": "Token abc"})
        assert resp.status_code == 401
