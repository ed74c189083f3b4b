# -*- coding: utf-8 -*-
"""
Rotas /api/v1/stripe
============================================================
POST /webhook          público; autenticado pela assinatura Stripe
GET  /customers ...    espelho local (admin)
============================================================
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from supabase import Client

from legalflow.api.deps import get_db, limiter, require_admin
from legalflow.responses import ok
from legalflow.stripe_billing import StripeBillingManager

router = APIRouter(prefix="/api/v1/stripe", tags=["stripe"])


@router.post("/webhook")
@limiter.limit("300/minute")
async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(None),
                         sb: Client = Depends(get_db)):
    payload = await request.body()
    manager = StripeBillingManager(sb)
    event = manager.parse_event(payload, stripe_signature)
    return manager.handle_event(event)


@router.get("/customers")
@limiter.limit("30/minute")
async def stripe_customers(request: Request, sb: Client = Depends(get_db), admin: dict = Depends(require_admin)):
    return ok(StripeBillingManager(sb).customers())


@router.get("/subscriptions")
@limiter.limit("30/minute")
async def stripe_subscriptions(request: Request, status: Optional[str] = None, sb: Client = Depends(get_db),
                               admin: dict = Depends(require_admin)):
    return ok(StripeBillingManager(sb).subscriptions(status))


@router.get("/invoices")
@limiter.limit("30/minute")
async def stripe_invoices(request: Request, status: Optional[str] = None, customer: Optional[str] = None,
                          sb: Client = Depends(get_db), admin: dict = Depends(require_admin)):
    return ok(StripeBillingManager(sb).invoices(status, customer))


@router.get("/past-due")
@limiter.limit("30/minute")
async def stripe_past_due(request: Request, sb: Client = Depends(get_db), admin: dict = Depends(require_admin)):
    return ok(StripeBillingManager(sb).past_due_summary())


@router.post("/test-connection")
@limiter.limit("5/minute")
async def stripe_test_connection(request: Request, sb: Client = Depends(get_db),
                                 admin: dict = Depends(require_admin)):
    return ok(StripeBillingManager(sb).test_connection())
