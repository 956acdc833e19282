from functools import lru_cache
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    SUPABASE_URL: str
    # Chave anon do projeto; o servidor só usa a service key
    SUPABASE_API_KEY: str = ""
    SUPABASE_SERVICE_KEY: str
    SUPABASE_JWT: str
    API_KEY: str = ""
    MODEL_NAME: str = "gemini-1.5-flash"
    BUCKET_DOCUMENTOS: str = "documentos"

    # Tempo máximo (segundos) de cada chamada ao Supabase; não há retry
    SUPABASE_TIMEOUT: int = 10
    CACHE_TTL_SEGUNDOS: int = 300
    URL_EXPIRACAO_SEGUNDOS: int = 60 * 60
    OCR_CONFIANCA_MINIMA: float = 0.6
    TAMANHO_MAXIMO_ARQUIVO: int = 20 * 1024 * 1024
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

@lru_cache
def importar_configs() -> Settings:
    return Settings()
