"""
session_store.py
----------------
Store en memoria de metadatos de sesión/transacción.

Mapea una key opaca (login_*, session_*, tx_*) a (fingerprint, user_id,
inserted_at) y permite leer los registros recientes de un usuario.

Características:
  - Capacidad acotada: al superarla se desalojan los registros más viejos
    (FIFO por orden de inserción, O(1) amortizado con OrderedDict)
  - TTL: los registros más viejos que ttl_seconds no se devuelven y se
    purgan al escribir
  - Thread-safe: todas las operaciones toman un mutex. Los registros son
    inmutables, así que un lector nunca ve un registro a medias
  - Efímero: un reinicio del proceso pierde todo. Que no haya datos
    significa "desconocido", nunca "verificado como seguro"

La instancia la construye quien sirve HTTP (main.py → app.state) y los
tests construyen instancias aisladas.
"""

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from motor_riesgo.domain.schemas import DeviceFingerprint, SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY    = 500
DEFAULT_TTL_SECONDS = 60 * 60 * 24
DEFAULT_RECENT_LIMIT = 5

LOGIN_PREFIX       = "login"
SESSION_PREFIX     = "session"
TRANSACTION_PREFIX = "tx"


def make_session_key(prefix: str, user_id: str, now: datetime) -> str:
    """
    Key advisoria: prefijo + timestamp en ms + primeros 8 chars del user_id.
    No es única entre procesos; una colisión simplemente sobrescribe.
    """
    return f"{prefix}_{int(now.timestamp() * 1000)}_{user_id[:8]}"


def make_transaction_key(transaction_id: str) -> str:
    return f"{TRANSACTION_PREFIX}_{transaction_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionMetadataStore:
    """
    Cache acotada de SessionRecord protegida por un threading.Lock.

    Un overwrite de la misma key cuenta como inserción nueva: el registro
    pasa a la posición más reciente con su nuevo inserted_at. Así el orden
    del OrderedDict es siempre el orden de inserción y la purga por TTL
    solo necesita mirar el frente.
    """

    def __init__(
        self,
        capacity:    int = DEFAULT_CAPACITY,
        ttl_seconds: Optional[int] = DEFAULT_TTL_SECONDS,
        clock:       Callable[[], datetime] = _utcnow,
    ):
        if capacity < 1:
            raise ValueError("capacity debe ser >= 1")
        self.capacity = capacity
        self.ttl      = timedelta(seconds=ttl_seconds) if ttl_seconds else None
        self._clock   = clock
        self._records: OrderedDict[str, SessionRecord] = OrderedDict()
        self._lock    = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ------------------------------------------------------------------ #
    #  Escritura                                                         #
    # ------------------------------------------------------------------ #

    def put(
        self,
        key:         str,
        fingerprint: DeviceFingerprint,
        user_id:     str,
    ) -> SessionRecord:
        now    = self._clock()
        record = SessionRecord(
            key         = key,
            user_id     = user_id or "unknown",
            fingerprint = fingerprint,
            inserted_at = now,
        )

        with self._lock:
            self._records.pop(key, None)
            self._records[key] = record
            self._purge_expired_locked(now)

            evicted = 0
            while len(self._records) > self.capacity:
                self._records.popitem(last=False)
                evicted += 1

        if evicted:
            logger.debug(
                f"[SessionStore] Capacidad {self.capacity} superada, "
                f"desalojados={evicted}"
            )
        return record

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_expired_locked(self._clock())

    def _purge_expired_locked(self, now: datetime) -> int:
        if self.ttl is None:
            return 0
        purged = 0
        while self._records:
            oldest = next(iter(self._records.values()))
            if now - oldest.inserted_at <= self.ttl:
                break
            self._records.popitem(last=False)
            purged += 1
        return purged

    # ------------------------------------------------------------------ #
    #  Lectura                                                           #
    # ------------------------------------------------------------------ #

    def get(self, key: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._records.get(key)
        if record is None or self._is_expired(record, self._clock()):
            return None
        return record

    def recent_for_user(
        self,
        user_id: str,
        limit:   int = DEFAULT_RECENT_LIMIT,
    ) -> list[SessionRecord]:
        """Hasta `limit` registros del usuario, del más nuevo al más viejo."""
        if limit <= 0:
            return []

        now    = self._clock()
        result: list[SessionRecord] = []
        with self._lock:
            for record in reversed(self._records.values()):
                if self._is_expired(record, now):
                    # Todo lo que sigue es aún más viejo
                    break
                if record.user_id != user_id:
                    continue
                result.append(record)
                if len(result) >= limit:
                    break
        return result

    def _is_expired(self, record: SessionRecord, now: datetime) -> bool:
        return self.ttl is not None and now - record.inserted_at > self.ttl
