"""
Conexão assíncrona com PostgreSQL via asyncpg.
"""
import asyncpg
from typing import Optional
import logging
from app.core.config import settings

logger = logging.getLogger(__name__)

# Pool global de conexões
_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """
    Retorna pool de conexões (singleton).
    Cria pool na primeira chamada.

    Raises:
        Exception: Se não conseguir criar o pool
    """
    global _pool
    if _pool is None:
        try:
            _pool = await asyncpg.create_pool(
                settings.DATABASE_URL,
                min_size=settings.DATABASE_POOL_MIN_SIZE,
                max_size=settings.DATABASE_POOL_MAX_SIZE,
                command_timeout=60,
            )
            logger.info(
                f"✅ Pool asyncpg criado (min={settings.DATABASE_POOL_MIN_SIZE}, "
                f"max={settings.DATABASE_POOL_MAX_SIZE})"
            )
        except Exception as e:
            logger.error(f"❌ Erro ao criar pool asyncpg: {e}")
            raise
    return _pool


async def close_pool():
    """
    Fecha pool de conexões (chamar no shutdown).
    """
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("🔌 Pool asyncpg fechado")

