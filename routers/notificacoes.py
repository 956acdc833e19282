from fastapi import APIRouter, HTTPException, Depends, status, Query, Path
from supabase import Client

from services.auth import pegar_usuario, pegar_usuario_admin
from services.erros import ErroPrazos, para_http
from services import notificacoes as servico
from services.notificacoes import CentralNotificacoes, registro_notificacoes

router = APIRouter(
    prefix="/notificacoes",
    tags=["Notificações"]
)


def pegar_central(user: dict = Depends(pegar_usuario)) -> CentralNotificacoes:
    """Central de notificações da sessão do usuário; exige /sessao/iniciar antes."""
    central = registro_notificacoes.obter(user["sub"])
    if central is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Sessão de notificações não iniciada. Chame /sessao/iniciar."
        )
    return central


@router.get("")
def listar_notificacoes(
    apenas_nao_lidas: bool = Query(False),
    central: CentralNotificacoes = Depends(pegar_central),
):
    return {
        "data": central.listar(apenas_nao_lidas),
        "nao_lidas": central.nao_lidas,
        "message": "Notificações listadas com sucesso."
    }


@router.post("/sincronizar")
def sincronizar_notificacoes(
    central: CentralNotificacoes = Depends(pegar_central),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Recarrega as notificações do banco e gera os alertas dos prazos em aberto.
    Ids repetidos são ignorados, então chamar de novo não duplica nada.
    """
    try:
        novas = servico.sincronizar(supabase_admin, central)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": {"novas": novas, "nao_lidas": central.nao_lidas},
        "message": "Notificações sincronizadas."
    }


@router.post("/lidas")
def marcar_todas_como_lidas(
    central: CentralNotificacoes = Depends(pegar_central),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    try:
        alteradas = servico.marcar_todas_como_lidas(supabase_admin, central)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": {"alteradas": alteradas, "nao_lidas": central.nao_lidas},
        "message": "Todas as notificações foram marcadas como lidas."
    }


@router.post("/{id_notificacao}/lida")
def marcar_como_lida(
    id_notificacao: str = Path(..., title="ID da notificação"),
    central: CentralNotificacoes = Depends(pegar_central),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    try:
        alterou = servico.marcar_como_lida(supabase_admin, central, id_notificacao)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": {"alterada": alterou, "nao_lidas": central.nao_lidas},
        "message": "Notificação marcada como lida." if alterou else "Notificação já estava lida."
    }


@router.post("/{id_notificacao}/dispensar")
def dispensar_notificacao(
    id_notificacao: str = Path(..., title="ID da notificação"),
    central: CentralNotificacoes = Depends(pegar_central),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    try:
        alterou = servico.dispensar(supabase_admin, central, id_notificacao)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": {"alterada": alterou, "nao_lidas": central.nao_lidas},
        "message": "Notificação dispensada."
    }
