import json
import logging
from typing import Any, Dict

from supabase import Client

from services.erros import ErroRemoto, ErroValidacaoPrazo

logger = logging.getLogger(__name__)

# Funções serverless que a API aceita repassar
FUNCOES_PERMITIDAS = {
    "calculate-das-service",
    "fiscal-service",
    "simulador-tributario",
}

def invocar_funcao(client: Client, nome: str, corpo: Dict[str, Any]) -> Any:
    """
    Chama uma edge function do Supabase com JSON e devolve o JSON da resposta.
    Sem retry: falhas sobem como ErroRemoto.
    """
    if nome not in FUNCOES_PERMITIDAS:
        raise ErroValidacaoPrazo(f"Função não permitida: {nome}", ["funcao"])

    try:
        resposta = client.functions.invoke(
            nome,
            invoke_options={"body": corpo, "responseType": "json"},
        )
    except Exception as e:
        logger.error("Erro ao invocar a função %s: %s", nome, e)
        raise ErroRemoto(f"Erro ao invocar a função {nome}: {e}") from e

    # Algumas versões do cliente devolvem bytes mesmo pedindo JSON
    if isinstance(resposta, (bytes, bytearray)):
        try:
            return json.loads(resposta)
        except json.JSONDecodeError as e:
            raise ErroRemoto(f"A função {nome} não retornou JSON válido") from e
    return resposta
