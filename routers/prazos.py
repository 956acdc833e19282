from fastapi import APIRouter, Depends, status, Query, Path
from supabase import Client
from datetime import date
from typing import List, Optional
import logging

from models.prazo_model import (
    AtualizarPrazoFiscal,
    CampoOrdenacao,
    ConcluirPrazo,
    CriarPrazoFiscal,
    DirecaoOrdenacao,
    FiltrosPrazos,
    OrdenacaoPrazos,
    PeriodoPrazo,
    PrioridadePrazo,
    StatusPrazo,
    TipoObrigacao,
)
from services.auth import pegar_usuario, pegar_usuario_admin
from services.erros import ErroPrazos, para_http
from services import prazos as servico
from services.notificacoes import registro_notificacoes

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/prazos",
    tags=["Prazos Fiscais"]
)


def filtros_da_query(
    periodo: Optional[PeriodoPrazo] = Query(None, description="Período corrente: semana, mes, trimestre ou ano"),
    data_inicio: Optional[date] = Query(None),
    data_fim: Optional[date] = Query(None),
    status_prazo: List[StatusPrazo] = Query([], alias="status"),
    prioridade: List[PrioridadePrazo] = Query([]),
    tipo_obrigacao: List[TipoObrigacao] = Query([]),
    empresa_id: Optional[str] = Query(None),
    busca: Optional[str] = Query(None, description="Busca aproximada no nome e na descrição"),
) -> FiltrosPrazos:
    """Filtros opcionais; ausência significa 'todos'."""
    return FiltrosPrazos(
        periodo=periodo,
        data_inicio=data_inicio,
        data_fim=data_fim,
        status=status_prazo,
        prioridade=prioridade,
        tipo_obrigacao=tipo_obrigacao,
        empresa_id=empresa_id,
        busca=busca,
    )


@router.get("")
def listar_prazos(
    filtros: FiltrosPrazos = Depends(filtros_da_query),
    ordenar_por: CampoOrdenacao = Query(CampoOrdenacao.due_date),
    direcao: DirecaoOrdenacao = Query(DirecaoOrdenacao.asc),
    pagina: int = Query(1, ge=1),
    limite: int = Query(50, ge=1, le=500),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Lista os prazos fiscais do usuário autenticado, filtrados e ordenados.
    """
    try:
        itens, total = servico.listar_prazos(
            supabase_admin, user["sub"], filtros,
            OrdenacaoPrazos(campo=ordenar_por, direcao=direcao), pagina, limite,
        )
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": itens,
        "total": total,
        "pagina": pagina,
        "limite": limite,
        "tem_proxima_pagina": total > pagina * limite,
        "message": "Prazos listados com sucesso."
    }


@router.get("/estatisticas")
def pegar_estatisticas(
    filtros: FiltrosPrazos = Depends(filtros_da_query),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Estatísticas calculadas sobre a mesma coleção que /prazos devolve para os mesmos filtros.
    """
    try:
        stats = servico.estatisticas_prazos(supabase_admin, user["sub"], filtros)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": stats,
        "message": "Estatísticas de prazos calculadas com sucesso."
    }


@router.get("/alertas", summary="Prazos em aberto que vencem em ≤ N dias")
def listar_alertas(
    dias: int = Query(5, ge=0, le=60, description="Janela a partir de hoje (padrão=5)"),
    incluir_vencidas: bool = Query(
        True, description="Se True, inclui prazos já vencidos."
    ),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    try:
        alertas = servico.listar_alertas(supabase_admin, user["sub"], dias, incluir_vencidas)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": alertas,
        "message": "Alertas de prazos listados com sucesso."
    }


@router.get("/calendario")
def pegar_calendario(
    mes: int = Query(None, ge=1, le=12),
    ano: int = Query(None, ge=2000, le=2100),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Eventos do mês (padrão: mês corrente) com cor por prioridade e totais.
    """
    hoje = date.today()
    try:
        visao = servico.montar_calendario(supabase_admin, user["sub"], mes or hoje.month, ano or hoje.year)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": visao,
        "message": "Calendário de prazos gerado com sucesso."
    }


@router.get("/painel")
def pegar_painel(
    filtros: FiltrosPrazos = Depends(filtros_da_query),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Endpoint consolidado da tela de prazos.
    Cada região tem seu próprio erro: uma fonte que falha não derruba as outras.
    Estrutura: {prazos:{data,erro}, estatisticas:{data,erro}, alertas:{data,erro}, notificacoes:{data,erro}}
    """
    user_id = user["sub"]

    def regiao(carregar):
        try:
            return {"data": carregar(), "erro": None}
        except Exception as e:
            logger.warning("Região do painel indisponível para %s: %s", user_id, e)
            return {"data": None, "erro": str(e)}

    def carregar_notificacoes():
        central = registro_notificacoes.obter(user_id)
        if central is None:
            raise RuntimeError("Sessão de notificações não iniciada.")
        return {"nao_lidas": central.nao_lidas, "itens": central.listar()[:10]}

    return {
        "data": {
            "prazos": regiao(lambda: servico.listar_prazos(supabase_admin, user_id, filtros)[0]),
            "estatisticas": regiao(lambda: servico.estatisticas_prazos(supabase_admin, user_id, filtros)),
            "alertas": regiao(lambda: servico.listar_alertas(supabase_admin, user_id)),
            "notificacoes": regiao(carregar_notificacoes),
        },
        "message": "Painel de prazos gerado."
    }


@router.get("/{id_prazo}")
def get_prazo_por_id(
    id_prazo: str = Path(..., title="ID do prazo fiscal"),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Retorna um prazo fiscal do usuário pelo ID.
    """
    try:
        prazo = servico.buscar_prazo(supabase_admin, user["sub"], id_prazo)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": prazo,
        "message": "Prazo encontrado com sucesso."
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def cadastrar_prazo(
    prazo: CriarPrazoFiscal,
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Cria um prazo fiscal. O corpo é validado antes de qualquer acesso ao banco.
    """
    try:
        criado = servico.criar_prazo(supabase_admin, user["sub"], prazo)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": criado,
        "message": "Prazo fiscal criado com sucesso."
    }


@router.patch("/{id_prazo}")
def atualizar_prazo(
    dados: AtualizarPrazoFiscal,
    id_prazo: str = Path(..., title="ID do prazo fiscal"),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Atualiza campos do prazo. Prazos não são excluídos: use status 'nao_se_aplica'.
    """
    try:
        atualizado = servico.atualizar_prazo(supabase_admin, user["sub"], id_prazo, dados)
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": atualizado,
        "message": "Prazo fiscal atualizado com sucesso."
    }


@router.post("/{id_prazo}/concluir")
def concluir_prazo(
    corpo: Optional[ConcluirPrazo] = None,
    id_prazo: str = Path(..., title="ID do prazo fiscal"),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    try:
        concluido = servico.concluir_prazo(
            supabase_admin, user["sub"], id_prazo, corpo.completion_notes if corpo else None
        )
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": concluido,
        "message": "Prazo fiscal marcado como entregue."
    }
