import logging

from fastapi import FastAPI, status, HTTPException
from fastapi.responses import JSONResponse
from routers import prazos, documentos, notificacoes, sessao, calculos

from settings.settings import importar_configs
from services.auth import pegar_usuario_admin
from services.cache import cache_consultas

# Configurações iniciais
st = importar_configs()

logging.basicConfig(
    level=getattr(logging, st.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

cache_consultas.configurar_ttl(st.CACHE_TTL_SEGUNDOS)

app = FastAPI(
    title="ContabilidadePRO - API de Prazos Fiscais",
    tags=["Global"]
)

# Rotas globais
@app.get("/")
def home():
    return { "home": "" }

@app.api_route("/ping", methods=["GET", "HEAD"])
def ping():
    try:
        pegar_usuario_admin()
    except Exception as e:
        logger.error("Ping sem conexão com o Supabase: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Algo de errado aconteceu: {str(e)}"
        )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content="Pong!"
    )

# Outras rotas
app.include_router(prazos.router)
app.include_router(documentos.router)
app.include_router(notificacoes.router)
app.include_router(sessao.router)
app.include_router(calculos.router)
