from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Any, Optional
from ...protocol.types.tx import Transaction
from ...protocol.types.common import ProtocolError, ErrorKind
from ..core.chain import LocalChain
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Upgrade Manager Local Node RPC")

chain: Optional[LocalChain] = None

# Error kinds mapped to HTTP status codes; anything else is a 400
_STATUS_BY_KIND = {
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.CONCURRENCY_CONFLICT: 409,
    ErrorKind.CAPACITY_EXCEEDED: 422,
}


class TxResponse(BaseModel):
    tx_hash: str
    status: str


class CallRequest(BaseModel):
    to_address: Optional[str] = None
    data: str = "0x"
    from_address: Optional[str] = None
    value: int = 0


def _require_chain() -> LocalChain:
    if not chain:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return chain


def _protocol_error(e: ProtocolError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_KIND.get(e.kind, 400), detail=e.to_dict())


@app.get("/status")
async def get_status():
    node = _require_chain()
    return {
        "chain_id": node.chain_id,
        "network": node.config.network_id,
        "height": node.height,
        "pending": len(node.pending),
        "automine": node.automine,
    }


@app.get("/account/{address}")
async def get_account(address: str):
    node = _require_chain()
    return {
        "address": address,
        "balance": str(node.get_balance(address)),
        "nonce": node.get_transaction_count(address),
    }


@app.get("/code/{address}")
async def get_code(address: str):
    node = _require_chain()
    return {"address": address, "code": node.get_code(address)}


@app.get("/storage/{address}/{key}")
async def get_storage(address: str, key: str):
    node = _require_chain()
    return {"address": address, "key": key, "value": node.get_storage_at(address, key)}


@app.post("/call")
async def call(req: CallRequest):
    node = _require_chain()
    try:
        result: Any = node.call(req.to_address, req.data, from_address=req.from_address, value=req.value)
    except ProtocolError as e:
        raise _protocol_error(e)
    return {"result": result}


@app.post("/tx/send", response_model=TxResponse)
async def send_tx(tx: Transaction):
    node = _require_chain()
    try:
        tx_hash = node.send_transaction(tx)
    except ProtocolError as e:
        raise _protocol_error(e)
    status = "confirmed" if node.automine else "pending"
    return TxResponse(tx_hash=tx_hash, status=status)


@app.get("/tx/{tx_hash}/receipt")
async def get_tx_receipt(tx_hash: str):
    """
    Get transaction receipt.

    Returns status (pending or confirmed), block height, created contract
    address, return value and contract events.
    """
    node = _require_chain()
    receipt = node.get_receipt(tx_hash)
    if not receipt:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return receipt.to_dict()


@app.post("/dev/mine")
async def mine():
    node = _require_chain()
    return {"mined": node.mine(), "height": node.height}


@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from ...observability.metrics import metrics_registry, update_chain_metrics

    if chain:
        update_chain_metrics(chain)

    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )


def set_chain(chain_instance: LocalChain) -> None:
    global chain
    chain = chain_instance


def start_rpc_server(chain_instance: LocalChain, host: str = "0.0.0.0", port: int = 8545):
    set_chain(chain_instance)
    import uvicorn
    logger.info(f"Serving {chain_instance.chain_id} on {host}:{port}")
    uvicorn.run(app, host=host, port=port)
