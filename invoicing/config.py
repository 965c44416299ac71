from __future__ import annotations

import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

# --- Chemins de base ---
ROOT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT_DIR / "data"
SETTINGS_JSON = DATA_DIR / "settings.json"

# variables d'environnement -> champ de configuration
ENV_OVERRIDES = {
    "INVOICING_PRODUCT_INTEGRATION": "product_integration_enabled",
    "INVOICING_STRICT_STOCK": "strict_stock",
    "INVOICING_LOW_STOCK_BAND": "low_stock_band",
    "INVOICING_OVERRIDE_THRESHOLD": "override_threshold_pct",
}
EMERGENCY_DISABLE_ENV = "INVOICING_EMERGENCY_DISABLE"

_TRUTHY = {"1", "true", "yes", "on", "oui"}


class EngineConfig(BaseModel):
    """
    Réglages de l'intégration produits, figés à la construction du moteur.
    - product_integration_enabled: False => seules les lignes manuelles sont possibles
    - strict_stock: plafonne la quantité au stock disponible
    - low_stock_band: marge (en unités) sous laquelle on avertit
    - override_threshold_pct: écart (%) au prix catalogue qui déclenche le suivi
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    product_integration_enabled: bool = True
    strict_stock: bool = False
    low_stock_band: Decimal = Field(default=Decimal("10"), ge=0)
    override_threshold_pct: Decimal = Field(default=Decimal("10"), ge=0)
    min_query_length: int = Field(default=2, ge=0)
    search_limit: int = Field(default=20, ge=1)


def _load_json(path: os.PathLike | str) -> Optional[Any]:
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.warning("settings illisibles (%s): %s", p, e)
        return None


def _is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUTHY


def load_engine_config(
    settings_path: os.PathLike | str = SETTINGS_JSON,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """
    Résout la configuration une seule fois :
    1) data/settings.json -> section "products"
    2) variables d'environnement INVOICING_* (prioritaires)
    3) coupure d'urgence (env ou settings) => intégration désactivée
    """
    env = os.environ if environ is None else environ

    s = _load_json(settings_path) or {}
    section = s.get("products") if isinstance(s, dict) else None
    raw = dict(section) if isinstance(section, dict) else {}

    emergency = _is_truthy(raw.pop("emergency_disable", False)) or _is_truthy(env.get(EMERGENCY_DISABLE_ENV))

    for env_key, field_name in ENV_OVERRIDES.items():
        val = env.get(env_key)
        if val is not None and val.strip() != "":
            raw[field_name] = val.strip()

    if emergency:
        raw["product_integration_enabled"] = False

    cfg = EngineConfig.model_validate(raw)
    logger.info(
        "config produits: integration=%s strict=%s band=%s threshold=%s%s",
        cfg.product_integration_enabled,
        cfg.strict_stock,
        cfg.low_stock_band,
        cfg.override_threshold_pct,
        " (coupure d'urgence)" if emergency else "",
    )
    return cfg
