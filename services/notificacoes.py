# services/notificacoes.py
"""
Central de notificações por usuário.

Cada usuário autenticado tem uma CentralNotificacoes em memória, criada ao
iniciar a sessão e descartada ao encerrá-la (ou ao reiniciar o servidor).
A central é alimentada por duas fontes:

- notificações persistidas na tabela 'notifications' (o status lido/dispensado
  é gravado de volta);
- alertas gerados a partir dos prazos em aberto que estão perto de vencer.

Uso:
    from services.notificacoes import registro_notificacoes

    central = registro_notificacoes.abrir(user_id)
    central.marcar_como_lida(id_notificacao)
    registro_notificacoes.encerrar(user_id)
"""

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional

from supabase import Client

from models.notificacao_model import NotificationData, PrioridadeNotificacao, StatusNotificacao
from models.prazo_model import FiltrosPrazos, PrazoFiscal, StatusPrazo
from services.erros import ErroRemoto, NotificacaoNaoEncontrada
from services.prazos import STATUS_ABERTOS, buscar_colecao

logger = logging.getLogger(__name__)

TABELA_NOTIFICACOES = "notifications"
LIMITE_CARGA = 50

# Antecedência (dias) e prioridade padrão do alerta por tipo de obrigação
REGRAS_ALERTA = {
    "DAS": (7, PrioridadeNotificacao.high),
    "IRPJ": (10, PrioridadeNotificacao.high),
    "CSLL": (10, PrioridadeNotificacao.high),
    "DEFIS": (15, PrioridadeNotificacao.critical),
    "SPED": (10, PrioridadeNotificacao.high),
    "DCTF": (10, PrioridadeNotificacao.high),
    "GPS": (5, PrioridadeNotificacao.high),
    "FGTS": (5, PrioridadeNotificacao.high),
    "RAIS": (30, PrioridadeNotificacao.critical),
    "DIRF": (20, PrioridadeNotificacao.high),
}
REGRA_PADRAO = (7, PrioridadeNotificacao.medium)


class CentralNotificacoes:
    """
    Coleção de notificações de um único usuário.

    Só cresce até as notificações serem lidas ou dispensadas; ids repetidos
    são ignorados, então sincronizar de novo não duplica nada.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.criada_em = datetime.now(timezone.utc)
        self._itens: Dict[str, NotificationData] = {}
        self._lock = Lock()

    def adicionar(self, notificacao: NotificationData) -> bool:
        """Adiciona a notificação; retorna False se o id já existia."""
        if notificacao.user_id != self.user_id:
            raise ValueError("Notificação de outro usuário")
        with self._lock:
            if notificacao.id in self._itens:
                return False
            self._itens[notificacao.id] = notificacao
            return True

    def listar(self, apenas_nao_lidas: bool = False) -> List[NotificationData]:
        """Mais recentes primeiro; dispensadas não aparecem."""
        with self._lock:
            itens = [
                n for n in self._itens.values()
                if n.status != StatusNotificacao.dismissed
                and (not apenas_nao_lidas or n.status == StatusNotificacao.unread)
            ]
        return sorted(itens, key=lambda n: n.created_at.timestamp(), reverse=True)

    def obter(self, id_notificacao: str) -> NotificationData:
        with self._lock:
            notificacao = self._itens.get(id_notificacao)
        if notificacao is None:
            raise NotificacaoNaoEncontrada(f"Notificação {id_notificacao} não encontrada")
        return notificacao

    @property
    def nao_lidas(self) -> int:
        with self._lock:
            return sum(1 for n in self._itens.values() if n.status == StatusNotificacao.unread)

    def marcar_como_lida(self, id_notificacao: str) -> bool:
        """Retorna True se mudou algo; repetir a chamada não tem efeito."""
        with self._lock:
            notificacao = self._itens.get(id_notificacao)
            if notificacao is None:
                raise NotificacaoNaoEncontrada(f"Notificação {id_notificacao} não encontrada")
            if notificacao.status != StatusNotificacao.unread:
                return False
            notificacao.status = StatusNotificacao.read
            return True

    def marcar_todas_como_lidas(self) -> int:
        with self._lock:
            alteradas = 0
            for notificacao in self._itens.values():
                if notificacao.status == StatusNotificacao.unread:
                    notificacao.status = StatusNotificacao.read
                    alteradas += 1
            return alteradas

    def dispensar(self, id_notificacao: str) -> bool:
        with self._lock:
            notificacao = self._itens.get(id_notificacao)
            if notificacao is None:
                raise NotificacaoNaoEncontrada(f"Notificação {id_notificacao} não encontrada")
            if notificacao.status == StatusNotificacao.dismissed:
                return False
            notificacao.status = StatusNotificacao.dismissed
            return True

    def remover_alertas_inativos(self, ids_ativos, source: str = "prazos") -> int:
        """Tira da central os alertas gerados que não vieram na última sincronização."""
        ids_ativos = set(ids_ativos)
        with self._lock:
            inativos = [
                id_ for id_, n in self._itens.items()
                if n.source == source and not n.persistida and id_ not in ids_ativos
            ]
            for id_ in inativos:
                del self._itens[id_]
        return len(inativos)


class RegistroNotificacoes:
    """Dono explícito das centrais: uma por usuário com sessão ativa."""

    def __init__(self):
        self._centrais: Dict[str, CentralNotificacoes] = {}
        self._lock = Lock()

    def abrir(self, user_id: str) -> CentralNotificacoes:
        with self._lock:
            central = self._centrais.get(user_id)
            if central is None:
                central = CentralNotificacoes(user_id)
                self._centrais[user_id] = central
                logger.info("Central de notificações aberta para %s", user_id)
            return central

    def obter(self, user_id: str) -> Optional[CentralNotificacoes]:
        with self._lock:
            return self._centrais.get(user_id)

    def encerrar(self, user_id: str) -> bool:
        with self._lock:
            central = self._centrais.pop(user_id, None)
        if central is not None:
            logger.info("Central de notificações encerrada para %s", user_id)
        return central is not None

    def limpar(self):
        with self._lock:
            self._centrais.clear()

    def __len__(self):
        with self._lock:
            return len(self._centrais)


registro_notificacoes = RegistroNotificacoes()


# -----------------------------------------------------------------------------
# Alertas de prazos
# -----------------------------------------------------------------------------

def prioridade_alerta(prazo: PrazoFiscal) -> PrioridadeNotificacao:
    if prazo.status_efetivo == StatusPrazo.vencida:
        return PrioridadeNotificacao.critical
    _, prioridade = REGRAS_ALERTA.get(prazo.obligation_type, REGRA_PADRAO)
    return prioridade


def deve_alertar(prazo: PrazoFiscal) -> bool:
    if prazo.status not in STATUS_ABERTOS:
        return False
    if prazo.dias_para_vencimento < 0:
        return True
    antecedencia, _ = REGRAS_ALERTA.get(prazo.obligation_type, REGRA_PADRAO)
    return prazo.dias_para_vencimento <= max(antecedencia, prazo.alert_days_before)


def alerta_de_prazo(prazo: PrazoFiscal, user_id: str) -> NotificationData:
    dias = prazo.dias_para_vencimento
    if dias < 0:
        titulo = f"{prazo.name} venceu há {-dias} dia(s)"
    elif dias == 0:
        titulo = f"{prazo.name} vence hoje"
    else:
        titulo = f"{prazo.name} vence em {dias} dia(s)"

    mensagem = f"Vencimento em {prazo.due_date.strftime('%d/%m/%Y')}"
    if prazo.empresa:
        mensagem += f" - {prazo.empresa.nome}"
    if prazo.estimated_amount:
        mensagem += f" - valor estimado R$ {prazo.estimated_amount:.2f}"

    return NotificationData(
        # id determinístico: o mesmo prazo com a mesma data gera o mesmo alerta
        id=f"prazo-{prazo.id}-{prazo.due_date.isoformat()}",
        user_id=user_id,
        title=titulo,
        message=mensagem,
        type="fiscal_alert",
        category="compliance",
        priority=prioridade_alerta(prazo),
        source="prazos",
        related_entity_type="fiscal_obligation",
        related_entity_id=prazo.id,
        action_url=f"/prazos/{prazo.id}",
        action_label="Ver prazo",
        metadata={"obligation_type": prazo.obligation_type, "due_date": prazo.due_date.isoformat()},
    )


def gerar_alertas_prazos(prazos: List[PrazoFiscal], user_id: str) -> List[NotificationData]:
    return [alerta_de_prazo(p, user_id) for p in prazos if deve_alertar(p)]


# -----------------------------------------------------------------------------
# Integração com o banco
# -----------------------------------------------------------------------------

def _converter_linha(linha: dict) -> NotificationData:
    dados = {k: v for k, v in linha.items() if v is not None}
    dados["id"] = str(linha["id"])
    dados["user_id"] = str(linha["user_id"])
    if dados.get("status") not in {s.value for s in StatusNotificacao}:
        dados["status"] = StatusNotificacao.unread.value
    if dados.get("priority") not in {p.value for p in PrioridadeNotificacao}:
        dados["priority"] = PrioridadeNotificacao.medium.value
    dados["persistida"] = True
    return NotificationData(**dados)


def carregar_notificacoes_banco(client: Client, user_id: str) -> List[NotificationData]:
    try:
        resposta = (
            client.table(TABELA_NOTIFICACOES)
            .select("*")
            .eq("user_id", user_id)
            .neq("status", StatusNotificacao.dismissed.value)
            .order("created_at", desc=True)
            .limit(LIMITE_CARGA)
            .execute()
        )
    except Exception as e:
        logger.error("Erro ao carregar notificações de %s: %s", user_id, e)
        raise ErroRemoto(f"Erro ao carregar notificações: {e}") from e
    return [_converter_linha(linha) for linha in resposta.data or []]


def gravar_status_banco(client: Client, user_id: str, novo_status: StatusNotificacao,
                        id_notificacao: Optional[str] = None):
    """Grava o status no banco; sem id, marca todas as não lidas do usuário."""
    q = (
        client.table(TABELA_NOTIFICACOES)
        .update({"status": novo_status.value, "updated_at": datetime.now(timezone.utc).isoformat()})
        .eq("user_id", user_id)
    )
    if id_notificacao is not None:
        q = q.eq("id", id_notificacao)
    else:
        q = q.eq("status", StatusNotificacao.unread.value)
    try:
        q.execute()
    except Exception as e:
        logger.error("Erro ao gravar status de notificação (%s): %s", user_id, e)
        raise ErroRemoto(f"Erro ao atualizar notificação: {e}") from e


def sincronizar(client: Client, central: CentralNotificacoes) -> int:
    """
    Carrega notificações persistidas e gera alertas dos prazos em aberto.
    Retorna quantas notificações novas entraram na central.
    """
    novas = 0
    for notificacao in carregar_notificacoes_banco(client, central.user_id):
        novas += central.adicionar(notificacao)

    prazos = buscar_colecao(client, central.user_id, FiltrosPrazos(status=STATUS_ABERTOS))
    alertas = gerar_alertas_prazos(prazos, central.user_id)
    for alerta in alertas:
        novas += central.adicionar(alerta)
    # Prazo concluído, remarcado ou fora da janela: o alerta antigo sai
    removidos = central.remover_alertas_inativos([a.id for a in alertas])

    logger.info("Sincronização de notificações de %s: %d nova(s), %d removida(s)",
                central.user_id, novas, removidos)
    return novas


def marcar_como_lida(client: Client, central: CentralNotificacoes, id_notificacao: str) -> bool:
    """Notificações persistidas são gravadas no banco antes do estado local."""
    notificacao = central.obter(id_notificacao)
    if notificacao.status != StatusNotificacao.unread:
        return False
    if notificacao.persistida:
        gravar_status_banco(client, central.user_id, StatusNotificacao.read, id_notificacao)
    return central.marcar_como_lida(id_notificacao)


def marcar_todas_como_lidas(client: Client, central: CentralNotificacoes) -> int:
    if any(n.persistida for n in central.listar(apenas_nao_lidas=True)):
        gravar_status_banco(client, central.user_id, StatusNotificacao.read)
    return central.marcar_todas_como_lidas()


def dispensar(client: Client, central: CentralNotificacoes, id_notificacao: str) -> bool:
    notificacao = central.obter(id_notificacao)
    if notificacao.status == StatusNotificacao.dismissed:
        return False
    if notificacao.persistida:
        gravar_status_banco(client, central.user_id, StatusNotificacao.dismissed, id_notificacao)
    return central.dispensar(id_notificacao)