from datetime import timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy import update

from core.auth.dependencies import require_admin
from core.auth.identity import Identity, JWTIdentityProvider
from core.auth.models import User, UserRole
from core.auth.schemas import UserRegisterSchema
from core.auth.services import AuthService
from core.auth.utils import JWTUtils, PasswordUtils

PASSWORD = "Secret123"


async def register(session_factory, username="alice", role=UserRole.USER):
    async with session_factory() as db:
        return await AuthService(db).register_user(UserRegisterSchema(
            username=username, email=f"{username}@example.com", password=PASSWORD, role=role,
        ))


async def issue_token(session_factory, user):
    async with session_factory() as db:
        token, jti, _ = await AuthService(db).create_access_token(user)
    return token, jti


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = PasswordUtils.hash_password(PASSWORD)
        assert hashed != PASSWORD
        assert PasswordUtils.verify_password(PASSWORD, hashed)
        assert not PasswordUtils.verify_password("Wrong1234", hashed)

    def test_weak_password_is_rejected(self):
        with pytest.raises(ValidationError):
            UserRegisterSchema(username="alice", email="alice@example.com", password="alllowercase1")

    def test_unknown_role_is_rejected(self):
        with pytest.raises(ValidationError):
            UserRegisterSchema(username="alice", email="alice@example.com", password=PASSWORD, role="root")


class TestAuthService:
    @pytest.mark.asyncio
    async def test_authenticate_by_username_or_email(self, session_factory):
        await register(session_factory)
        async with session_factory() as db:
            service = AuthService(db)
            assert (await service.authenticate_user("alice", PASSWORD)).username == "alice"
            assert (await service.authenticate_user("ALICE@example.com", PASSWORD)) is not None
            assert await service.authenticate_user("alice", "Wrong1234") is None

    @pytest.mark.asyncio
    async def test_duplicate_username_conflicts(self, session_factory):
        await register(session_factory)
        with pytest.raises(HTTPException) as exc:
            await register(session_factory)
        assert exc.value.status_code == 409

    @pytest.mark.asyncio
    async def test_revoked_token_no_longer_verifies(self, session_factory):
        user = await register(session_factory)
        token, jti = await issue_token(session_factory, user)
        async with session_factory() as db:
            service = AuthService(db)
            assert (await service.verify_token(token)).id == user.id
            assert await service.revoke_token(jti)
            assert await service.verify_token(token) is None

    @pytest.mark.asyncio
    async def test_ensure_admin_is_idempotent(self, session_factory):
        async with session_factory() as db:
            service = AuthService(db)
            first = await service.ensure_admin("admin", "admin@example.com", "Admin123!")
            second = await service.ensure_admin("admin", "admin@example.com", "Admin123!")
        assert first.id == second.id
        assert first.role == UserRole.SUPER_ADMIN


class TestJWT:
    def test_token_round_trip_claims(self):
        user = type("U", (), {"id": "1234", "username": "alice", "role": "admin"})()
        token, jti, expires_in = JWTUtils.create_access_token(user)
        data = JWTUtils.verify_token(token)
        assert data.sub == "1234"
        assert data.role == "admin"
        assert data.jti == jti
        assert expires_in > 0

    def test_expired_token_is_invalid(self):
        user = type("U", (), {"id": "1234", "username": "alice", "role": "user"})()
        token, _, _ = JWTUtils.create_access_token(user, expires_delta=timedelta(seconds=-5))
        assert JWTUtils.verify_token(token) is None

    def test_tampered_token_is_invalid(self):
        user = type("U", (), {"id": "1234", "username": "alice", "role": "user"})()
        token, _, _ = JWTUtils.create_access_token(user)
        assert JWTUtils.verify_token(token[:-2] + "xx") is None


class TestIdentity:
    @pytest.mark.asyncio
    async def test_provider_resolves_valid_token(self, session_factory):
        user = await register(session_factory, "carol", role=UserRole.ADMIN)
        token, _ = await issue_token(session_factory, user)
        identity = await JWTIdentityProvider(session_factory).resolve(token)
        assert identity == Identity(user_id=str(user.id), role="admin", username="carol")
        assert identity.is_admin

    @pytest.mark.asyncio
    async def test_provider_rejects_missing_and_bad_tokens(self, session_factory):
        provider = JWTIdentityProvider(session_factory)
        assert await provider.resolve(None) is None
        assert await provider.resolve("garbage") is None

    @pytest.mark.asyncio
    async def test_inactive_user_is_rejected(self, session_factory):
        user = await register(session_factory)
        token, _ = await issue_token(session_factory, user)
        async with session_factory() as db:
            await db.execute(update(User).where(User.id == user.id).values(is_active=False))
            await db.commit()
        assert await JWTIdentityProvider(session_factory).resolve(token) is None

    def test_roles(self):
        assert Identity("a", "super_admin").is_admin
        assert Identity("a", "admin").is_admin
        assert not Identity("u", "user").is_admin

    def test_require_admin(self):
        assert require_admin(Identity("a", "admin")).user_id == "a"
        with pytest.raises(HTTPException) as exc:
            require_admin(Identity("u", "user"))
        assert exc.value.status_code == 403
