"""API router registry used by the app factory.

Route module imports and inclusion order live here so `negosyo.main`
stays focused on startup wiring.
"""

from __future__ import annotations

from fastapi import APIRouter

from . import (
    admin,
    analytics,
    audit,
    creators,
    earnings,
    files,
    health,
    notifications,
    payout_methods,
    referrals,
    submissions,
    withdrawals,
)

API_PREFIX = "/api/v1"

API_ROUTERS: tuple[APIRouter, ...] = (
    health.router,
    creators.router,
    submissions.router,
    files.router,
    earnings.router,
    withdrawals.router,
    payout_methods.router,
    referrals.router,
    analytics.router,
    notifications.router,
    admin.router,
    audit.router,
)

__all__ = ["API_PREFIX", "API_ROUTERS"]
