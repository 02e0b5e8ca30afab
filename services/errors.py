# NG-HEADER: Nombre de archivo: errors.py
# NG-HEADER: Ubicación: services/errors.py
# NG-HEADER: Descripción: Errores de negocio recuperables (canjes, pedidos, facturas).
# NG-HEADER: Lineamientos: Ver AGENTS.md
"""Errores de negocio que se muestran al usuario.

Se lanzan desde los servicios luego de hacer rollback; la app los traduce a
respuestas HTTP 400/403/404 con ``{"detail", "code"}``.
"""
from __future__ import annotations


class BusinessError(Exception):
    status_code = 400
    code = "business_error"

    def __init__(self, detail: str, *, code: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if code:
            self.code = code


class NotFoundError(BusinessError):
    status_code = 404
    code = "not_found"


class InvalidCartError(BusinessError):
    code = "invalid_cart"


class InsufficientPointsError(BusinessError):
    code = "insufficient_points"


class RewardUnavailableError(BusinessError):
    code = "reward_unavailable"


class RedemptionConflictError(BusinessError):
    code = "redemption_conflict"


class RedemptionOwnershipError(BusinessError):
    code = "redemption_not_owned"


class ForbiddenError(BusinessError):
    status_code = 403
    code = "forbidden"
