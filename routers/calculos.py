from fastapi import APIRouter, HTTPException, Depends, status, Path, Body
from supabase import Client
from typing import Any, Dict

from services.auth import pegar_usuario, pegar_usuario_admin
from services.erros import ErroPrazos, ErroRemoto, para_http
from services.funcoes_edge import invocar_funcao

router = APIRouter(
    prefix="/calculos",
    tags=["Cálculos"]
)


@router.post("/{funcao}")
def executar_calculo(
    funcao: str = Path(..., title="Nome da função serverless"),
    corpo: Dict[str, Any] = Body(default={}),
    user: dict = Depends(pegar_usuario),
    supabase_admin: Client = Depends(pegar_usuario_admin),
):
    """
    Repassa o corpo para uma das funções serverless permitidas
    (calculate-das-service, fiscal-service, simulador-tributario).
    """
    try:
        resultado = invocar_funcao(supabase_admin, funcao, {**corpo, "user_id": user["sub"]})
    except ErroRemoto as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except ErroPrazos as e:
        raise para_http(e)

    return {
        "data": resultado,
        "message": f"Função {funcao} executada com sucesso."
    }
