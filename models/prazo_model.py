from pydantic import BaseModel, Field, model_validator
from enum import Enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional

class StatusPrazo(str, Enum):
    pendente = "pendente"
    entregue = "entregue"
    vencida = "vencida"
    nao_se_aplica = "nao_se_aplica"

class PrioridadePrazo(str, Enum):
    baixa = "baixa"
    media = "media"
    alta = "alta"
    critica = "critica"

class SituacaoPrazo(str, Enum):
    vencida = "vencida"
    proxima = "proxima"
    futura = "futura"

class TipoObrigacao(str, Enum):
    das = "DAS"
    dctf = "DCTF"
    ecf = "ECF"
    sped = "SPED"
    defis = "DEFIS"
    dirf = "DIRF"
    rais = "RAIS"
    caged = "CAGED"
    gps = "GPS"
    fgts = "FGTS"
    icms = "ICMS"
    iss = "ISS"
    irpj = "IRPJ"
    csll = "CSLL"
    pis = "PIS"
    cofins = "COFINS"

class FrequenciaPrazo(str, Enum):
    mensal = "mensal"
    trimestral = "trimestral"
    semestral = "semestral"
    anual = "anual"

class CategoriaObrigacao(str, Enum):
    declaracao = "declaracao"
    pagamento = "pagamento"
    informativa = "informativa"
    escrituracao = "escrituracao"

class PeriodoPrazo(str, Enum):
    semana = "semana"
    mes = "mes"
    trimestre = "trimestre"
    ano = "ano"

class CampoOrdenacao(str, Enum):
    due_date = "due_date"
    priority = "priority"
    estimated_amount = "estimated_amount"
    created_at = "created_at"

class DirecaoOrdenacao(str, Enum):
    asc = "asc"
    desc = "desc"

# Body para criar um prazo fiscal; due_date é obrigatório
class CriarPrazoFiscal(BaseModel):
    empresa_id: str = Field(min_length=1)
    obligation_type: TipoObrigacao
    category: CategoriaObrigacao = CategoriaObrigacao.pagamento
    name: str = Field(min_length=1)
    description: Optional[str] = None
    code: Optional[str] = None
    due_date: date
    frequency: FrequenciaPrazo = FrequenciaPrazo.mensal
    priority: PrioridadePrazo = PrioridadePrazo.media
    estimated_amount: Optional[float] = Field(default=None, ge=0)
    alert_days_before: int = Field(default=7, ge=0, le=365)
    obligation_data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

CAMPOS_NAO_NULOS = ("name", "due_date", "priority", "alert_days_before", "status", "obligation_data", "metadata")

# Body para atualizar; só os campos enviados são gravados
class AtualizarPrazoFiscal(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    due_date: Optional[date] = None
    priority: Optional[PrioridadePrazo] = None
    estimated_amount: Optional[float] = Field(default=None, ge=0)
    alert_days_before: Optional[int] = Field(default=None, ge=0, le=365)
    status: Optional[StatusPrazo] = None
    completion_notes: Optional[str] = None
    obligation_data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def rejeitar_nulos(self):
        # Colunas NOT NULL: omitir é permitido, mandar null não
        nulos = [c for c in CAMPOS_NAO_NULOS if c in self.model_fields_set and getattr(self, c) is None]
        if nulos:
            raise ValueError(f"Campos não aceitam null: {', '.join(nulos)}")
        return self

class ConcluirPrazo(BaseModel):
    completion_notes: Optional[str] = None

class FiltrosPrazos(BaseModel):
    periodo: Optional[PeriodoPrazo] = None
    data_inicio: Optional[date] = None
    data_fim: Optional[date] = None
    status: List[StatusPrazo] = Field(default_factory=list)
    prioridade: List[PrioridadePrazo] = Field(default_factory=list)
    tipo_obrigacao: List[TipoObrigacao] = Field(default_factory=list)
    empresa_id: Optional[str] = None
    busca: Optional[str] = None

class OrdenacaoPrazos(BaseModel):
    campo: CampoOrdenacao = CampoOrdenacao.due_date
    direcao: DirecaoOrdenacao = DirecaoOrdenacao.asc

class EmpresaResumo(BaseModel):
    id: str
    nome: str
    cnpj: Optional[str] = None
    regime_tributario: Optional[str] = None

# Modelo de prazo para resposta, já com os campos calculados
class PrazoFiscal(BaseModel):
    id: str
    user_id: str
    empresa_id: str
    obligation_type: str
    category: Optional[str] = None
    name: str
    description: Optional[str] = None
    code: Optional[str] = None
    due_date: date
    frequency: Optional[str] = None
    status: StatusPrazo
    priority: PrioridadePrazo
    estimated_amount: Optional[float] = None
    alert_days_before: int = 7
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completion_notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    empresa: Optional[EmpresaResumo] = None

    situacao: SituacaoPrazo
    status_efetivo: StatusPrazo
    dias_para_vencimento: int
    valor_total: float

class ResumoGrupo(BaseModel):
    total: int = 0
    valor: float = 0.0
    vencidos: int = 0

class ResumoEmpresa(ResumoGrupo):
    nome: str = ""

class ResumoMes(BaseModel):
    total: int = 0
    valor: float = 0.0

class EstatisticasPrazos(BaseModel):
    total_prazos: int = 0
    por_status: Dict[str, int] = Field(default_factory=dict)
    prazos_vencidos: int = 0
    prazos_proximos: int = 0
    prazos_futuros: int = 0
    valor_total_estimado: float = 0.0
    valor_vencido: float = 0.0
    valor_proximo: float = 0.0
    por_tipo: Dict[str, ResumoGrupo] = Field(default_factory=dict)
    por_empresa: Dict[str, ResumoEmpresa] = Field(default_factory=dict)
    por_mes: Dict[str, ResumoMes] = Field(default_factory=dict)

class EventoCalendario(BaseModel):
    id: str
    title: str
    data: date
    priority: PrioridadePrazo
    status: StatusPrazo
    empresa: str
    valor: Optional[float] = None
    color: str

class VisaoCalendario(BaseModel):
    mes: int
    ano: int
    eventos: List[EventoCalendario]
    total_eventos: int
    eventos_criticos: int
    valor_total: float

class AlertaPrazo(BaseModel):
    id: str
    name: str
    obligation_type: str
    due_date: date
    dias_restantes: int
    status: StatusPrazo
    priority: PrioridadePrazo
