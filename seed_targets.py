"""
Seed data: Chilean banks and financial institutions with public login pages.

Running the seed twice is safe; existing codes get their name, URL and
description refreshed.
"""

from typing import Dict, List

from logging_utils import get_logger
from target_store import TargetStore

logger = get_logger(__name__)

SEED_TARGETS: List[Dict[str, str]] = [
    {
        "name": "Banco de Chile",
        "code": "BCHILE",
        "login_url": "https://login.portal.bancochile.cl",
        "description": "One of Chile's oldest banks, established in 1893",
    },
    {
        "name": "BancoEstado",
        "code": "BESTADO",
        "login_url": "https://us.bancoestado.cl/Backoffice/login",
        "description": "The only public bank in Chile",
    },
    {
        "name": "Banco Santander Chile",
        "code": "SANTANDER",
        "login_url": "https://app.santander.cl",
        "description": "Largest bank in Chile by loans and deposits",
    },
    {
        "name": "Banco BCI",
        "code": "BCI",
        "login_url": "https://www.bci.cl",
        "description": "Banco de Crédito e Inversiones",
    },
    {
        "name": "Banco Itau Chile",
        "code": "ITAU",
        "login_url": "https://banco.itau.cl",
        "description": "Itaú Unibanco's Chilean subsidiary",
    },
    {
        "name": "Scotiabank Chile",
        "code": "SCOTIABANK",
        "login_url": "https://www.scotiabank.cl/mfe-login-web-cl/",
        "description": "Scotiabank online banking portal",
    },
    {
        "name": "Banco Security",
        "code": "SECURITY",
        "login_url": "https://www.bancosecurity.cl",
        "description": "Banco Security online banking",
    },
    {
        "name": "Consorcio Financiero",
        "code": "CONSORCIO",
        "login_url": "https://portal-corredores.consorcio.cl/login-tradicional/",
        "description": "Consorcio brokers portal",
    },
    {
        "name": "Bice Vida Compañía de Seguros",
        "code": "BICEVIDA",
        "login_url": "https://bicevida.portalclientes.cl",
        "description": "Bice Vida customer portal",
    },
]


def seed_targets(store: TargetStore) -> Dict[str, int]:
    """Upsert every seed target. Returns counts of created and updated entries."""
    created = updated = 0
    for entry in SEED_TARGETS:
        _, was_created = store.upsert_target(**entry)
        if was_created:
            created += 1
        else:
            updated += 1
    logger.info("Seeded targets: %d created, %d updated", created, updated)
    return {"created": created, "updated": updated}
