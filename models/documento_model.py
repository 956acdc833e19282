from pydantic import BaseModel, Field
from datetime import date
from typing import Any, Dict, List, Optional

from models.prazo_model import CategoriaObrigacao, FrequenciaPrazo, PrioridadePrazo

# Prazo candidato encontrado no documento, aguardando confirmação do usuário
class PrazoDetectado(BaseModel):
    tipo_obrigacao: Optional[str] = None
    descricao: str
    data_vencimento: Optional[date] = None
    valor_estimado: Optional[float] = None
    competencia: Optional[str] = None
    codigo_barras: Optional[str] = None
    confidence: float = 0.0
    requer_revisao: bool = True

class ResultadoExtracao(BaseModel):
    success: bool
    texto_extraido: str = ""
    confianca: float = 0.0
    provider: str = "nenhum"
    prazos_detectados: List[PrazoDetectado] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

class DocumentoUploadPrazo(BaseModel):
    id: str
    empresa_id: str
    nome_arquivo: str
    caminho_arquivo: str
    tipo_documento: str
    status: str
    extracao: ResultadoExtracao
    pre_preenchimento: Dict[str, Any] = Field(default_factory=dict)

# Body para confirmar um candidato; campos enviados sobrescrevem os extraídos
class ConfirmarPrazoDocumento(BaseModel):
    indice_candidato: Optional[int] = Field(default=None, ge=0)
    obligation_type: Optional[str] = None
    category: Optional[CategoriaObrigacao] = None
    name: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[date] = None
    frequency: Optional[FrequenciaPrazo] = None
    priority: Optional[PrioridadePrazo] = None
    estimated_amount: Optional[float] = None
    alert_days_before: Optional[int] = None
