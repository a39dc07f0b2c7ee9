# Copyright (c) 2025 Alexandre Tavares
# Licensed under the Creative Commons Attribution-NonCommercial 4.0 International (CC BY-NC 4.0)
# See the LICENSE file in the project root for more information.
from fastapi import APIRouter
from finamanage.api.v1 import health, feedback, notifications, transactions
from finamanage.api.v1 import whatsapp, receipts
from finamanage.api.v1 import billing, support, fair
from finamanage.api.v1 import security, account

"""
Roteador principal da API v1.


- Agrega e inclui sub-routers (feedback, transações, whatsapp, billing, promoção...).
- Centraliza prefixos/tags; importado por `main.py` como `/api/v1`.
"""

router_v1 = APIRouter(tags=["v1"])

# Sub-rotas
router_v1.include_router(health.router,        prefix="/health",        tags=["health"])
router_v1.include_router(feedback.router,      prefix="/feedback",      tags=["feedback"])
router_v1.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
router_v1.include_router(transactions.router,  prefix="/transactions",  tags=["transactions"])

router_v1.include_router(whatsapp.router, prefix="/whatsapp", tags=["whatsapp"])
router_v1.include_router(receipts.router, prefix="/receipts", tags=["receipts"])

router_v1.include_router(billing.router, prefix="/billing", tags=["billing"])
router_v1.include_router(support.router, prefix="/support", tags=["support"])
router_v1.include_router(fair.router,    prefix="/fair",    tags=["fair"])

router_v1.include_router(security.router, prefix="/security", tags=["security"])
router_v1.include_router(account.router,  prefix="/account",  tags=["account"])
