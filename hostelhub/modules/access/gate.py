"""
Per-request access gate.

Paths fall into one of four classes. Public paths pass untouched. Auth-only
paths need a session, subscription-gated paths need a session plus an
entitling subscription, and admin paths need a session plus the admin role.
Unauthenticated or unentitled callers are redirected with the original path
as ``redirect``; admin denials go to the site root without a return target.

The gate resolves the session at most once and opens at most one database
session per request, shared by the subscription and role lookups.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import HTTPConnection, Request
from starlette.responses import RedirectResponse

from hostelhub.core.cache import AccessCaches
from hostelhub.core.security import resolve_session_user
from hostelhub.modules.access.entitlement import has_access, utcnow
from hostelhub.repository.profile_repository import profile_repository
from hostelhub.repository.subscription_repository import subscription_repository
from hostelhub.schemas.session_schema import SessionUser
from hostelhub.schemas.subscription_schema import SubscriptionSnapshot

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
PAYWALL_PATH = "/subscribe"
ADMIN_DENIED_PATH = "/"

AUTH_ONLY_PREFIXES = ("/profile", "/subscribe", "/checkout")
SUBSCRIPTION_PREFIXES = (
    "/dashboard",
    "/hostels",
    "/hostel",
    "/favorites",
    "/compare",
    "/contacted",
    "/viewed",
)
ADMIN_PREFIXES = ("/admin",)


class RouteClass(str, enum.Enum):
    PUBLIC = "public"
    AUTH = "auth"
    SUBSCRIPTION = "subscription"
    ADMIN = "admin"


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def classify_route(path: str) -> RouteClass:
    if len(path) > 1:
        path = path.rstrip("/")
    if any(_matches(path, prefix) for prefix in ADMIN_PREFIXES):
        return RouteClass.ADMIN
    if any(_matches(path, prefix) for prefix in SUBSCRIPTION_PREFIXES):
        return RouteClass.SUBSCRIPTION
    if any(_matches(path, prefix) for prefix in AUTH_ONLY_PREFIXES):
        return RouteClass.AUTH
    return RouteClass.PUBLIC


def build_redirect(target: str, return_to: Optional[str] = None) -> str:
    if not return_to:
        return target
    return f"{target}?{urlencode({'redirect': return_to}, safe='/')}"


@dataclass
class GateDecision:
    route_class: RouteClass
    redirect_to: Optional[str] = None
    user: Optional[SessionUser] = None

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


SessionFactory = Callable[[], AsyncSession]


class LazySession:
    """Opens the database session on first use so cached requests never connect."""

    def __init__(self, factory: SessionFactory):
        self._factory = factory
        self._session: Optional[AsyncSession] = None

    async def get(self) -> AsyncSession:
        if self._session is None:
            self._session = self._factory()
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


# A role strategy answers True when it can confirm the admin role and None when it cannot.
RoleStrategy = Callable[[SessionUser, LazySession], Awaitable[Optional[bool]]]


async def profile_role_strategy(user: SessionUser, db: LazySession) -> Optional[bool]:
    try:
        role = await profile_repository.get_role(await db.get(), user.id)
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Profile role lookup failed for user %s: %s", user.id, e)
        return None
    return True if role == "admin" else None


async def metadata_role_strategy(user: SessionUser, db: LazySession) -> Optional[bool]:
    return True if user.metadata.get("role") == "admin" else None


DEFAULT_ROLE_STRATEGIES: Sequence[RoleStrategy] = (profile_role_strategy, metadata_role_strategy)


async def resolve_admin_status(
    user: SessionUser,
    db: LazySession,
    caches: AccessCaches,
    strategies: Sequence[RoleStrategy] = DEFAULT_ROLE_STRATEGIES,
) -> bool:
    cached = caches.get_admin_status(user.id)
    if cached is not None:
        return cached

    is_admin = False
    for strategy in strategies:
        if await strategy(user, db):
            is_admin = True
            break
    caches.set_admin_status(user.id, is_admin)
    return is_admin


class AccessGate:
    def __init__(
        self,
        caches: AccessCaches,
        session_factory: SessionFactory,
        resolve_user: Callable[[HTTPConnection], Optional[SessionUser]] = resolve_session_user,
        role_strategies: Sequence[RoleStrategy] = DEFAULT_ROLE_STRATEGIES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.caches = caches
        self.session_factory = session_factory
        self.resolve_user = resolve_user
        self.role_strategies = tuple(role_strategies)
        self.clock = clock

    async def evaluate(self, connection: HTTPConnection) -> GateDecision:
        path = connection.url.path
        route_class = classify_route(path)
        if route_class is RouteClass.PUBLIC:
            return GateDecision(route_class)

        user = self.resolve_user(connection)

        if route_class is RouteClass.ADMIN:
            if user is None:
                return GateDecision(route_class, redirect_to=ADMIN_DENIED_PATH)
        elif user is None:
            return GateDecision(route_class, redirect_to=build_redirect(LOGIN_PATH, path))

        if route_class is RouteClass.AUTH:
            return GateDecision(route_class, user=user)

        db = LazySession(self.session_factory)
        try:
            if route_class is RouteClass.ADMIN:
                if not await self.is_admin(user, db):
                    logger.info("Non-admin user %s denied access to %s", user.id, path)
                    return GateDecision(route_class, redirect_to=ADMIN_DENIED_PATH, user=user)
                return GateDecision(route_class, user=user)

            if not await self.has_entitlement(user, db):
                return GateDecision(route_class, redirect_to=build_redirect(PAYWALL_PATH, path), user=user)
            return GateDecision(route_class, user=user)
        finally:
            await db.close()

    async def has_entitlement(self, user: SessionUser, db: LazySession) -> bool:
        snapshot = self.caches.get_subscription(user.id)
        if snapshot is None:
            try:
                subscription = await subscription_repository.get_latest_active(await db.get(), user.id)
            except (SQLAlchemyError, OSError) as e:
                logger.error("Subscription lookup failed for user %s: %s", user.id, e)
                return False
            if subscription is None:
                return False
            snapshot = SubscriptionSnapshot.model_validate(subscription)
            self.caches.set_subscription(user.id, snapshot)
        return has_access(snapshot, now=self.clock())

    async def is_admin(self, user: SessionUser, db: LazySession) -> bool:
        return await resolve_admin_status(user, db, self.caches, self.role_strategies)


class AccessGateMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, gate: AccessGate):
        super().__init__(app)
        self.gate = gate

    async def dispatch(self, request: Request, call_next):
        decision = await self.gate.evaluate(request)
        if not decision.allowed:
            return RedirectResponse(decision.redirect_to, status_code=307)
        if decision.user is not None:
            request.state.session_user = decision.user
        return await call_next(request)
