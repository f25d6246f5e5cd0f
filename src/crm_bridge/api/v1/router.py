"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.crm_bridge.api.v1 import contacts, health, oauth

router = APIRouter()

router.include_router(health.router)
router.include_router(oauth.router)
router.include_router(contacts.router)
