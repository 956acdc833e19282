from fastapi import APIRouter, Depends
from supabase import Client
import logging

from services.auth import pegar_usuario, pegar_usuario_admin
from services.erros import ErroRemoto
from services.notificacoes import registro_notificacoes, sincronizar
from services.prazos import invalidar_prazos

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/sessao",
    tags=["Sessão"]
)


@router.post("/iniciar")
def iniciar_sessao(
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Abre a central de notificações do usuário e faz a primeira sincronização.
    Se a sincronização falhar, a sessão continua aberta e vazia.
    """
    central = registro_notificacoes.abrir(user["sub"])

    erro = None
    try:
        sincronizar(supabase_admin, central)
    except ErroRemoto as e:
        logger.warning("Sessão de %s aberta sem sincronizar: %s", user["sub"], e)
        erro = str(e)

    return {
        "data": {"nao_lidas": central.nao_lidas, "erro_sincronizacao": erro},
        "message": "Sessão iniciada."
    }


@router.post("/encerrar")
def encerrar_sessao(user: dict = Depends(pegar_usuario)):
    """Descarta a central de notificações e as consultas em cache do usuário."""
    encerrada = registro_notificacoes.encerrar(user["sub"])
    invalidar_prazos(user["sub"])

    return {
        "data": {"encerrada": encerrada},
        "message": "Sessão encerrada."
    }
