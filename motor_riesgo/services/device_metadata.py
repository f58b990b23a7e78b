"""
device_metadata.py
------------------
Extrae el fingerprint de dispositivo/sesión de un request entrante.

No tiene estado ni efectos secundarios: quien llama decide si guarda el
resultado en el SessionMetadataStore.

Reglas:
  - Nunca falla por headers faltantes → sustituye "Unknown"/vacío
  - Tipo de dispositivo por substrings del user-agent (determinístico)
  - IP de origen: primer header presente de _FORWARDED_HEADERS,
    si no hay ninguno se usa la dirección de la conexión
  - session_id: header X-Session-ID si viene, si no un digest estable
    de user-agent + IP + día calendario
"""

import hashlib
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Optional

from starlette.requests import Request

from motor_riesgo.domain.schemas import DeviceFingerprint, DeviceType

logger = logging.getLogger(__name__)

# Orden importa: el primero presente gana
_FORWARDED_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")

_SESSION_HEADER    = "x-session-id"
_SESSION_ID_LENGTH = 16
_UA_SUMMARY_MAX    = 200

# Tablet antes que móvil: el UA de un iPad también trae "Mobile"
_TABLET_KEYWORDS = ("ipad", "tablet")
_MOBILE_KEYWORDS = ("mobile", "android", "iphone")

_BROWSERS = (
    ("edg",     "Edge"),
    ("opr",     "Opera"),
    ("opera",   "Opera"),
    ("chrome",  "Chrome"),
    ("firefox", "Firefox"),
    ("safari",  "Safari"),
)

_OPERATING_SYSTEMS = (
    ("windows", "Windows"),
    ("android", "Android"),
    ("iphone",  "iOS"),
    ("ipad",    "iOS"),
    ("mac",     "macOS"),
    ("linux",   "Linux"),
)


def classify_device(user_agent: str) -> DeviceType:
    ua = user_agent.lower()
    if not ua:
        return DeviceType.UNKNOWN
    if any(kw in ua for kw in _TABLET_KEYWORDS):
        return DeviceType.TABLET
    if any(kw in ua for kw in _MOBILE_KEYWORDS):
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def _first_match(ua: str, table: tuple[tuple[str, str], ...]) -> str:
    for needle, label in table:
        if needle in ua:
            return label
    return "Unknown"


def resolve_network_origin(
    headers:     Mapping[str, str],
    client_host: Optional[str],
) -> str:
    """
    X-Forwarded-For puede traer una cadena de proxies: "cliente, proxy1, proxy2".
    Tomamos la primera IP (la del cliente original).
    """
    for name in _FORWARDED_HEADERS:
        value = headers.get(name)
        if value:
            return value.split(",")[0].strip()
    if client_host:
        return client_host
    logger.debug("[DeviceMetadata] Sin IP de origen, se usa 'unknown'")
    return "unknown"


def derive_session_id(user_agent: str, network_origin: str, now: datetime) -> str:
    seed = f"{user_agent}_{network_origin}_{now.date().isoformat()}"
    return hashlib.sha256(seed.encode()).hexdigest()[:_SESSION_ID_LENGTH]


def extract_fingerprint(
    headers:     Mapping[str, str],
    client_host: Optional[str] = None,
    now:         Optional[datetime] = None,
) -> DeviceFingerprint:
    """
    Construye el DeviceFingerprint a partir de headers y dirección de conexión.
    `now` es inyectable para tests; por defecto datetime.now(UTC).
    """
    # Normalizamos a minúsculas: un dict plano no es case-insensitive
    normalized = {k.lower(): v for k, v in headers.items()}
    now        = now or datetime.now(timezone.utc)

    user_agent = normalized.get("user-agent", "")
    if not user_agent:
        logger.debug("[DeviceMetadata] Request sin User-Agent → device Unknown")

    ua_lower       = user_agent.lower()
    network_origin = resolve_network_origin(normalized, client_host)
    session_id     = (
        normalized.get(_SESSION_HEADER)
        or derive_session_id(user_agent, network_origin, now)
    )

    return DeviceFingerprint(
        device_type        = classify_device(user_agent),
        network_origin     = network_origin,
        user_agent_summary = user_agent[:_UA_SUMMARY_MAX],
        browser            = _first_match(ua_lower, _BROWSERS),
        os                 = _first_match(ua_lower, _OPERATING_SYSTEMS),
        captured_at        = now,
        session_id         = session_id,
    )


def fingerprint_from_request(request: Request) -> DeviceFingerprint:
    client_host = request.client.host if request.client else None
    return extract_fingerprint(request.headers, client_host)
