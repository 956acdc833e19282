# services/cache.py
"""
Cache de consultas por usuário.

Guarda coleções já buscadas no Supabase (prazos filtrados, ordenados) para que
a listagem, as estatísticas e o calendário leiam exatamente o mesmo conjunto.

- Chave: (prefixo, usuário, filtros normalizados)
- TTL configurável
- Invalidação por tag (ex.: "prazos:<user_id>") depois de cada escrita

Uso:
    from services.cache import cache_consultas

    achou, valor = cache_consultas.get(chave)
    cache_consultas.set(chave, valor, tags=[tag_prazos(user_id)])
    cache_consultas.invalidate_tag(tag_prazos(user_id))
"""

import json
import time
import logging
from typing import Any, Dict, Iterable, Optional, Set, Tuple
from dataclasses import dataclass, field
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Entrada do cache com TTL"""
    value: Any
    expires_at: float
    tags: Set[str] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)

    @property
    def is_expired(self) -> bool:
        return time.time() > self.expires_at


def tag_prazos(user_id: str) -> str:
    return f"prazos:{user_id}"


def montar_chave(prefixo: str, user_id: str, parametros: Dict[str, Any]) -> str:
    """Chave determinística: a ordem dos filtros não altera a chave."""
    normalizado = json.dumps(parametros, sort_keys=True, default=str)
    return f"{prefixo}:{user_id}:{normalizado}"


class CacheConsultas:
    """
    Cache thread-safe de consultas.

    Os endpoints síncronos do FastAPI rodam em threadpool, por isso o lock.
    """

    DEFAULT_TTL = 300  # 5 minutos

    def __init__(self, max_size: int = 1000, ttl: float = None):
        self._cache: Dict[str, CacheEntry] = {}
        self._tags: Dict[str, Set[str]] = {}
        # Contador por tag, incrementado a cada invalidação
        self._geracoes: Dict[str, int] = {}
        self._epoca = 0
        self._lock = Lock()
        self._max_size = max_size
        self._ttl = ttl if ttl is not None else self.DEFAULT_TTL
        self._stats = {
            "hits": 0,
            "misses": 0,
            "invalidations": 0,
            "descartados": 0
        }

    def configurar_ttl(self, ttl: float):
        self._ttl = ttl

    def get(self, key: str) -> Tuple[bool, Any]:
        """
        Busca valor no cache.

        Returns:
            Tuple[found: bool, value: Any]
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return False, None

            if entry.is_expired:
                self._remover(key)
                self._stats["misses"] += 1
                return False, None

            self._stats["hits"] += 1
            return True, entry.value

    def geracoes(self, tags: Iterable[str]) -> Tuple[int, Dict[str, int]]:
        """Marca a ser capturada antes da consulta e devolvida ao set()."""
        with self._lock:
            return self._marca(tags)

    def _marca(self, tags: Iterable[str]) -> Tuple[int, Dict[str, int]]:
        return self._epoca, {tag: self._geracoes.get(tag, 0) for tag in tags}

    def set(self, key: str, value: Any, ttl: float = None, tags: Iterable[str] = (),
            geracoes: Optional[Tuple[int, Dict[str, int]]] = None) -> bool:
        """
        Armazena valor no cache.

        Args:
            key: Chave do cache
            value: Valor a armazenar
            ttl: Tempo de vida em segundos (padrao: TTL configurado)
            tags: Tags usadas para invalidação em grupo
            geracoes: Marca de geracoes() tirada antes da consulta; se alguma
                tag foi invalidada desde então, o valor é descartado

        Returns:
            False quando o valor foi descartado por estar desatualizado
        """
        if ttl is None:
            ttl = self._ttl
        tags = set(tags)

        with self._lock:
            if geracoes is not None and geracoes != self._marca(tags):
                self._stats["descartados"] += 1
                logger.debug("[CacheConsultas] Valor desatualizado descartado: %s", key)
                return False

            if len(self._cache) >= self._max_size:
                self._cleanup_expired()
            if len(self._cache) >= self._max_size:
                # Ainda cheio: descarta a entrada mais antiga
                mais_antiga = min(self._cache, key=lambda k: self._cache[k].created_at)
                self._remover(mais_antiga)

            self._remover(key)
            entry = CacheEntry(value=value, expires_at=time.time() + ttl, tags=tags)
            self._cache[key] = entry
            for tag in entry.tags:
                self._tags.setdefault(tag, set()).add(key)
        return True

    def invalidate(self, key: str):
        """Remove uma entrada especifica do cache"""
        with self._lock:
            if key in self._cache:
                self._remover(key)
                self._stats["invalidations"] += 1

    def invalidate_tag(self, tag: str) -> int:
        """Remove todas as entradas marcadas com a tag"""
        with self._lock:
            self._geracoes[tag] = self._geracoes.get(tag, 0) + 1
            chaves = list(self._tags.pop(tag, set()))
            for key in chaves:
                self._remover(key)
            self._stats["invalidations"] += len(chaves)
        if chaves:
            logger.debug("[CacheConsultas] Tag %s invalidada: %d entradas", tag, len(chaves))
        return len(chaves)

    def invalidate_all(self):
        """Remove todas as entradas do cache"""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._tags.clear()
            self._epoca += 1
            self._stats["invalidations"] += count
        logger.info(f"[CacheConsultas] Cache limpo: {count} entradas removidas")

    def _remover(self, key: str):
        """Remove a entrada e seus vínculos de tag (chamado com lock)"""
        entry = self._cache.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            chaves = self._tags.get(tag)
            if chaves is not None:
                chaves.discard(key)
                if not chaves:
                    del self._tags[tag]

    def _cleanup_expired(self):
        """Remove entradas expiradas (chamado com lock)"""
        now = time.time()
        expired_keys = [k for k, v in self._cache.items() if v.expires_at < now]
        for key in expired_keys:
            self._remover(key)

    def get_stats(self) -> Dict[str, Any]:
        """Retorna estatisticas do cache"""
        with self._lock:
            total_requests = self._stats["hits"] + self._stats["misses"]
            hit_rate = (
                self._stats["hits"] / total_requests * 100
                if total_requests > 0 else 0
            )
            return {
                "size": len(self._cache),
                "max_size": self._max_size,
                "hits": self._stats["hits"],
                "misses": self._stats["misses"],
                "hit_rate": round(hit_rate, 1),
                "invalidations": self._stats["invalidations"]
            }


cache_consultas = CacheConsultas()
