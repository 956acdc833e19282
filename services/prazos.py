# services/prazos.py
"""
Consulta, estatísticas e mutações de prazos fiscais.

A listagem, as estatísticas, os alertas e o calendário leem a mesma coleção
filtrada, guardada no cache por (usuário, filtros, ordenação). Toda escrita
invalida as coleções do usuário depois que o Supabase confirma a gravação.
"""

import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError
from rapidfuzz import fuzz
from supabase import Client

from models.prazo_model import (
    AlertaPrazo,
    AtualizarPrazoFiscal,
    CampoOrdenacao,
    CriarPrazoFiscal,
    DirecaoOrdenacao,
    EstatisticasPrazos,
    EventoCalendario,
    FiltrosPrazos,
    OrdenacaoPrazos,
    PeriodoPrazo,
    PrazoFiscal,
    PrioridadePrazo,
    ResumoEmpresa,
    ResumoGrupo,
    ResumoMes,
    SituacaoPrazo,
    StatusPrazo,
    VisaoCalendario,
)
from services.cache import cache_consultas, montar_chave, tag_prazos
from services.erros import (
    ErroRemoto,
    ErroValidacaoPrazo,
    PrazoNaoEncontrado,
    TransicaoStatusInvalida,
)

logger = logging.getLogger(__name__)

TABELA_PRAZOS = "fiscal_obligations"
SELECT_PRAZOS = "*, empresa:empresas(id, nome, cnpj, regime_tributario)"

DIAS_PROXIMA = 7
SIMILARIDADE_MINIMA_BUSCA = 70

ORDEM_PRIORIDADE = {
    PrioridadePrazo.baixa: 0,
    PrioridadePrazo.media: 1,
    PrioridadePrazo.alta: 2,
    PrioridadePrazo.critica: 3,
}

CORES_PRIORIDADE = {
    PrioridadePrazo.critica: "#dc2626",
    PrioridadePrazo.alta: "#ea580c",
    PrioridadePrazo.media: "#ca8a04",
    PrioridadePrazo.baixa: "#16a34a",
}

# Status de destino permitidos a partir de cada status
TRANSICOES_STATUS = {
    StatusPrazo.pendente: {StatusPrazo.entregue, StatusPrazo.vencida, StatusPrazo.nao_se_aplica},
    StatusPrazo.vencida: {StatusPrazo.entregue, StatusPrazo.nao_se_aplica, StatusPrazo.pendente},
    StatusPrazo.entregue: {StatusPrazo.pendente},
    StatusPrazo.nao_se_aplica: {StatusPrazo.pendente},
}

STATUS_ABERTOS = [StatusPrazo.pendente, StatusPrazo.vencida]


def _agora_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _executar(consulta, descricao: str):
    """Executa a consulta no Supabase; qualquer falha vira ErroRemoto, sem retry."""
    try:
        return consulta.execute()
    except Exception as e:
        logger.error("Erro ao %s: %s", descricao, e)
        raise ErroRemoto(f"Erro ao {descricao}: {e}") from e


# -----------------------------------------------------------------------------
# Campos calculados
# -----------------------------------------------------------------------------

def _para_data(valor: Any) -> date:
    if isinstance(valor, datetime):
        return valor.date()
    if isinstance(valor, date):
        return valor
    return date.fromisoformat(str(valor)[:10])


def calcular_situacao(dias_para_vencimento: int) -> SituacaoPrazo:
    if dias_para_vencimento < 0:
        return SituacaoPrazo.vencida
    if dias_para_vencimento <= DIAS_PROXIMA:
        return SituacaoPrazo.proxima
    return SituacaoPrazo.futura


def calcular_status_efetivo(status: StatusPrazo, dias_para_vencimento: int) -> StatusPrazo:
    """Um prazo pendente com a data já passada é exibido como vencido."""
    if status == StatusPrazo.pendente and dias_para_vencimento < 0:
        return StatusPrazo.vencida
    return status


def montar_prazo(linha: Dict[str, Any], hoje: Optional[date] = None) -> PrazoFiscal:
    """Converte uma linha do banco em PrazoFiscal com os campos calculados."""
    hoje = hoje or date.today()
    dados = dict(linha)
    for campo in ("id", "user_id", "empresa_id"):
        if dados.get(campo) is not None:
            dados[campo] = str(dados[campo])

    empresa = dados.get("empresa")
    if isinstance(empresa, dict) and empresa.get("id") is not None:
        dados["empresa"] = {**empresa, "id": str(empresa["id"])}
    else:
        dados["empresa"] = None

    if dados.get("metadata") is None:
        dados["metadata"] = {}

    vencimento = _para_data(dados["due_date"])
    dias = (vencimento - hoje).days
    status = StatusPrazo(dados["status"])

    dados["due_date"] = vencimento
    dados["dias_para_vencimento"] = dias
    dados["situacao"] = calcular_situacao(dias)
    dados["status_efetivo"] = calcular_status_efetivo(status, dias)
    dados["valor_total"] = float(dados.get("estimated_amount") or 0)
    return PrazoFiscal(**dados)


# -----------------------------------------------------------------------------
# Filtros
# -----------------------------------------------------------------------------

def intervalo_periodo(periodo: PeriodoPrazo, referencia: Optional[date] = None) -> Tuple[date, date]:
    """Primeiro e último dia do período corrente (semana, mês, trimestre ou ano)."""
    ref = referencia or date.today()
    if periodo == PeriodoPrazo.semana:
        inicio = ref - timedelta(days=ref.weekday())
        return inicio, inicio + timedelta(days=6)
    if periodo == PeriodoPrazo.mes:
        ultimo = calendar.monthrange(ref.year, ref.month)[1]
        return ref.replace(day=1), ref.replace(day=ultimo)
    if periodo == PeriodoPrazo.trimestre:
        mes_inicio = 3 * ((ref.month - 1) // 3) + 1
        mes_fim = mes_inicio + 2
        ultimo = calendar.monthrange(ref.year, mes_fim)[1]
        return date(ref.year, mes_inicio, 1), date(ref.year, mes_fim, ultimo)
    return date(ref.year, 1, 1), date(ref.year, 12, 31)


def resolver_intervalo(filtros: FiltrosPrazos, hoje: Optional[date] = None) -> Tuple[Optional[date], Optional[date]]:
    """Datas explícitas têm precedência sobre o período."""
    inicio, fim = None, None
    if filtros.periodo is not None:
        inicio, fim = intervalo_periodo(filtros.periodo, hoje)
    if filtros.data_inicio is not None:
        inicio = filtros.data_inicio
    if filtros.data_fim is not None:
        fim = filtros.data_fim
    if inicio and fim and inicio > fim:
        raise ErroValidacaoPrazo("data_inicio posterior a data_fim", ["data_inicio", "data_fim"])
    return inicio, fim


def _corresponde_busca(prazo: PrazoFiscal, termo: str) -> bool:
    termo = termo.lower().strip()
    scores = [
        fuzz.partial_ratio(termo, prazo.name.lower().strip()),
        fuzz.partial_ratio(termo, (prazo.description or "").lower().strip()),
    ]
    return max(scores) >= SIMILARIDADE_MINIMA_BUSCA


def _montar_consulta(client: Client, user_id: str, filtros: FiltrosPrazos,
                     inicio: Optional[date], fim: Optional[date]):
    q = (
        client.table(TABELA_PRAZOS)
        .select(SELECT_PRAZOS)
        .eq("user_id", user_id)
    )

    if filtros.empresa_id:
        q = q.eq("empresa_id", filtros.empresa_id)
    if filtros.status:
        q = q.in_("status", [s.value for s in filtros.status])
    if filtros.prioridade:
        q = q.in_("priority", [p.value for p in filtros.prioridade])
    if filtros.tipo_obrigacao:
        q = q.in_("obligation_type", [t.value for t in filtros.tipo_obrigacao])
    if inicio:
        q = q.gte("due_date", inicio.isoformat())
    if fim:
        q = q.lte("due_date", fim.isoformat())

    # Ordem base; a ordenação pedida é aplicada em memória sobre a coleção
    return q.order("due_date", desc=False)


# -----------------------------------------------------------------------------
# Consultas
# -----------------------------------------------------------------------------

def buscar_colecao(client: Client, user_id: str, filtros: Optional[FiltrosPrazos] = None) -> List[PrazoFiscal]:
    """
    Retorna a coleção completa (sem paginação) de prazos do usuário para os
    filtros, em ordem de vencimento.

    O resultado fica no cache por (usuário, filtros, dia); listagem e
    estatísticas com os mesmos filtros leem exatamente a mesma lista,
    qualquer que seja a ordenação pedida na listagem.
    """
    filtros = filtros or FiltrosPrazos()
    hoje = date.today()
    inicio, fim = resolver_intervalo(filtros, hoje)

    chave = montar_chave("prazos", user_id, {
        "filtros": filtros.model_dump(mode="json"),
        "hoje": hoje.isoformat(),
    })
    tag = tag_prazos(user_id)
    marca = cache_consultas.geracoes([tag])
    achou, colecao = cache_consultas.get(chave)
    if achou:
        return colecao

    resposta = _executar(
        _montar_consulta(client, user_id, filtros, inicio, fim),
        "buscar prazos",
    )
    colecao = [montar_prazo(linha, hoje) for linha in (resposta.data or [])]

    if filtros.busca and filtros.busca.strip():
        colecao = [p for p in colecao if _corresponde_busca(p, filtros.busca)]

    # Uma escrita concluída durante a consulta invalida a marca: não guarda
    cache_consultas.set(chave, colecao, tags=[tag], geracoes=marca)
    logger.debug("Coleção de prazos carregada para %s: %d itens", user_id, len(colecao))
    return colecao


def _valor_ordenacao(prazo: PrazoFiscal, campo: CampoOrdenacao):
    if campo == CampoOrdenacao.priority:
        # baixa < media < alta < critica
        return ORDEM_PRIORIDADE[prazo.priority]
    valor = getattr(prazo, campo.value)
    if isinstance(valor, datetime):
        return valor.timestamp()
    return valor


def ordenar_colecao(colecao: List[PrazoFiscal], ordenacao: OrdenacaoPrazos) -> List[PrazoFiscal]:
    """Nova lista ordenada; valores nulos vão para o fim nas duas direções."""
    com_valor = [p for p in colecao if _valor_ordenacao(p, ordenacao.campo) is not None]
    sem_valor = [p for p in colecao if _valor_ordenacao(p, ordenacao.campo) is None]
    com_valor.sort(
        key=lambda p: _valor_ordenacao(p, ordenacao.campo),
        reverse=ordenacao.direcao == DirecaoOrdenacao.desc,
    )
    return com_valor + sem_valor


def listar_prazos(client: Client, user_id: str, filtros: Optional[FiltrosPrazos] = None,
                  ordenacao: Optional[OrdenacaoPrazos] = None, pagina: int = 1,
                  limite: int = 50) -> Tuple[List[PrazoFiscal], int]:
    """Retorna (página de prazos, total da coleção)."""
    if pagina < 1 or limite < 1:
        raise ErroValidacaoPrazo("pagina e limite devem ser maiores que zero", ["pagina", "limite"])
    colecao = ordenar_colecao(buscar_colecao(client, user_id, filtros), ordenacao or OrdenacaoPrazos())
    inicio = (pagina - 1) * limite
    return colecao[inicio:inicio + limite], len(colecao)


def buscar_prazo(client: Client, user_id: str, id_prazo: str) -> PrazoFiscal:
    resposta = _executar(
        client.table(TABELA_PRAZOS)
        .select(SELECT_PRAZOS)
        .eq("id", id_prazo)
        .eq("user_id", user_id)
        .limit(1),
        "buscar prazo",
    )
    if not resposta.data:
        raise PrazoNaoEncontrado(f"Prazo {id_prazo} não encontrado")
    return montar_prazo(resposta.data[0])


# -----------------------------------------------------------------------------
# Estatísticas
# -----------------------------------------------------------------------------

def calcular_estatisticas(prazos: List[PrazoFiscal]) -> EstatisticasPrazos:
    """Redução pura da coleção; não consulta nada fora da lista recebida."""
    stats = EstatisticasPrazos(total_prazos=len(prazos))

    for prazo in prazos:
        valor = prazo.valor_total
        status = prazo.status_efetivo
        vencido = status == StatusPrazo.vencida

        stats.por_status[status.value] = stats.por_status.get(status.value, 0) + 1
        stats.valor_total_estimado += valor

        if vencido:
            stats.prazos_vencidos += 1
            stats.valor_vencido += valor
        elif status == StatusPrazo.pendente:
            if prazo.situacao == SituacaoPrazo.proxima:
                stats.prazos_proximos += 1
                stats.valor_proximo += valor
            else:
                stats.prazos_futuros += 1

        tipo = stats.por_tipo.setdefault(prazo.obligation_type, ResumoGrupo())
        tipo.total += 1
        tipo.valor += valor
        tipo.vencidos += int(vencido)

        empresa = stats.por_empresa.setdefault(
            prazo.empresa_id,
            ResumoEmpresa(nome=prazo.empresa.nome if prazo.empresa else ""),
        )
        empresa.total += 1
        empresa.valor += valor
        empresa.vencidos += int(vencido)

        mes = stats.por_mes.setdefault(prazo.due_date.strftime("%Y-%m"), ResumoMes())
        mes.total += 1
        mes.valor += valor

    return stats


def estatisticas_prazos(client: Client, user_id: str, filtros: Optional[FiltrosPrazos] = None) -> EstatisticasPrazos:
    return calcular_estatisticas(buscar_colecao(client, user_id, filtros))


# -----------------------------------------------------------------------------
# Mutações
# -----------------------------------------------------------------------------

def validar_criacao(dados: Union[CriarPrazoFiscal, Dict[str, Any]]) -> CriarPrazoFiscal:
    """Valida a entrada antes de qualquer chamada remota."""
    if isinstance(dados, CriarPrazoFiscal):
        return dados
    try:
        return CriarPrazoFiscal(**dados)
    except ValidationError as e:
        campos = [".".join(str(p) for p in erro["loc"]) for erro in e.errors()]
        raise ErroValidacaoPrazo(f"Dados do prazo inválidos: {', '.join(campos)}", campos) from e


def invalidar_prazos(user_id: str):
    cache_consultas.invalidate_tag(tag_prazos(user_id))


def criar_prazo(client: Client, user_id: str, dados: Union[CriarPrazoFiscal, Dict[str, Any]]) -> PrazoFiscal:
    entrada = validar_criacao(dados)

    agora = _agora_iso()
    registro = entrada.model_dump(mode="json")
    registro.update({
        "user_id": user_id,
        "status": StatusPrazo.pendente.value,
        "alert_sent": False,
        "created_at": agora,
        "updated_at": agora,
    })

    resposta = _executar(client.table(TABELA_PRAZOS).insert(registro), "criar prazo")
    if not resposta.data:
        raise ErroRemoto("Erro ao criar prazo: o banco não retornou o registro inserido")

    # Só invalida depois da confirmação da escrita
    invalidar_prazos(user_id)
    prazo = montar_prazo(resposta.data[0])
    logger.info("Prazo %s criado para o usuário %s", prazo.id, user_id)
    return prazo


def atualizar_prazo(client: Client, user_id: str, id_prazo: str,
                    dados: Union[AtualizarPrazoFiscal, Dict[str, Any]]) -> PrazoFiscal:
    if not isinstance(dados, AtualizarPrazoFiscal):
        try:
            dados = AtualizarPrazoFiscal(**dados)
        except ValidationError as e:
            campos = [".".join(str(p) for p in erro["loc"]) for erro in e.errors()]
            raise ErroValidacaoPrazo(f"Dados da atualização inválidos: {', '.join(campos)}", campos) from e

    alteracoes = dados.model_dump(mode="json", exclude_unset=True)
    if not alteracoes:
        raise ErroValidacaoPrazo("Nenhum campo informado para atualização")

    if "status" in alteracoes:
        atual = buscar_prazo(client, user_id, id_prazo)
        novo = StatusPrazo(alteracoes["status"])
        if novo != atual.status:
            if novo not in TRANSICOES_STATUS[atual.status]:
                raise TransicaoStatusInvalida(atual.status.value, novo.value)
            if novo == StatusPrazo.entregue:
                alteracoes["completed_at"] = _agora_iso()
                alteracoes["completed_by"] = user_id
            elif atual.status == StatusPrazo.entregue:
                alteracoes["completed_at"] = None
                alteracoes["completed_by"] = None

    alteracoes["updated_at"] = _agora_iso()

    resposta = _executar(
        client.table(TABELA_PRAZOS)
        .update(alteracoes)
        .eq("id", id_prazo)
        .eq("user_id", user_id),
        "atualizar prazo",
    )
    if not resposta.data:
        raise PrazoNaoEncontrado(f"Prazo {id_prazo} não encontrado")

    invalidar_prazos(user_id)
    return montar_prazo(resposta.data[0])


def concluir_prazo(client: Client, user_id: str, id_prazo: str, notas: Optional[str] = None) -> PrazoFiscal:
    dados = {"status": StatusPrazo.entregue}
    if notas:
        dados["completion_notes"] = notas
    return atualizar_prazo(client, user_id, id_prazo, dados)


# -----------------------------------------------------------------------------
# Alertas e calendário
# -----------------------------------------------------------------------------

def listar_alertas(client: Client, user_id: str, dias: int = 5, incluir_vencidas: bool = True) -> List[AlertaPrazo]:
    """
    Prazos em aberto que vencem em até N dias.
    - incluir_vencidas=True  -> tudo com due_date <= hoje+N (inclui atrasados)
    - incluir_vencidas=False -> apenas hoje <= due_date <= hoje+N
    """
    hoje = date.today()
    limite = hoje + timedelta(days=dias)
    filtros = FiltrosPrazos(
        status=STATUS_ABERTOS,
        data_inicio=None if incluir_vencidas else hoje,
        data_fim=limite,
    )

    saida = []
    for prazo in buscar_colecao(client, user_id, filtros):
        saida.append(AlertaPrazo(
            id=prazo.id,
            name=prazo.name,
            obligation_type=prazo.obligation_type,
            due_date=prazo.due_date,
            dias_restantes=prazo.dias_para_vencimento,
            status=prazo.status_efetivo,
            priority=prazo.priority,
        ))
    return saida


def montar_calendario(client: Client, user_id: str, mes: int, ano: int) -> VisaoCalendario:
    if not 1 <= mes <= 12:
        raise ErroValidacaoPrazo("mes deve estar entre 1 e 12", ["mes"])
    ultimo = calendar.monthrange(ano, mes)[1]
    filtros = FiltrosPrazos(data_inicio=date(ano, mes, 1), data_fim=date(ano, mes, ultimo))
    prazos = buscar_colecao(client, user_id, filtros)

    eventos = [
        EventoCalendario(
            id=p.id,
            title=p.name,
            data=p.due_date,
            priority=p.priority,
            status=p.status_efetivo,
            empresa=p.empresa.nome if p.empresa else "",
            valor=p.estimated_amount,
            color=CORES_PRIORIDADE[p.priority],
        )
        for p in prazos
    ]
    return VisaoCalendario(
        mes=mes,
        ano=ano,
        eventos=eventos,
        total_eventos=len(eventos),
        eventos_criticos=sum(1 for p in prazos if p.priority == PrioridadePrazo.critica),
        valor_total=sum(p.valor_total for p in prazos),
    )
