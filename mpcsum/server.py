# mpcsum/server.py
# -*- coding: utf-8 -*-
"""
MPC 求和节点（HTTP）：
- POST   /processes                   创建加法进程 {process_id, peers, threshold, input?}
- GET    /processes                   列出进程 id（?active=true 只列未结束的）
- GET    /processes/{id}              结果 {process_id, status, state, result, reason}
- DELETE /processes/{id}              删除记录并停止轮询
- GET    /processes/{id}/input-share  给请求方（X-Peer-Address）的输入分片
- GET    /processes/{id}/sum-share    本节点的和分片（未算出时 425）

运行示例（三节点三端口）：
  NODE_ADDRESS=http://127.0.0.1:8001 PORT=8001 python -m mpcsum.server
  NODE_ADDRESS=http://127.0.0.1:8002 PORT=8002 python -m mpcsum.server
  NODE_ADDRESS=http://127.0.0.1:8003 PORT=8003 python -m mpcsum.server

或者：
  NODE_ADDRESS=... uvicorn mpcsum.server:create_app --factory --port 8001
"""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import Settings, configure_logging, load_env_file
from .errors import AlreadyExists, NotReady, ProcessNotFound, UnknownPeer
from .network import HTTP_STATUS_NOT_READY, PEER_HEADER, HttpPeerClient, PeerClient, scalar_to_hex
from .poller import PollerManager, PollerSettings
from .process import ProcessState
from .store import ProcessStore

logger = logging.getLogger(__name__)


class CreateProcessReq(BaseModel):
    process_id: str
    peers: List[str]
    threshold: int
    input: Optional[int] = None  # 默认随机，仅供演示/测试指定


class ProcessResp(BaseModel):
    process_id: str
    status: str
    state: ProcessState
    result: Optional[int] = None
    reason: Optional[str] = None


class ShareResp(BaseModel):
    point: int
    value: str  # 0x.. (16B)


class ProcessListResp(BaseModel):
    processes: List[str]


def _result_resp(store: ProcessStore, process_id: str) -> ProcessResp:
    r = store.result(process_id)
    return ProcessResp(
        process_id=r.process_id, status=r.status, state=r.state, result=r.result, reason=r.reason
    )


def _requester(header: Optional[str]) -> str:
    if not header or not header.strip():
        raise HTTPException(status_code=400, detail=f"missing {PEER_HEADER} header")
    return header


def create_app(settings: Optional[Settings] = None, peer_client: Optional[PeerClient] = None) -> FastAPI:
    if settings is None:
        load_env_file()
        settings = Settings.from_env()

    store = ProcessStore(settings.node_address)
    client = peer_client or HttpPeerClient(settings.node_address, timeout=settings.http_timeout)
    pollers = PollerManager(store, client, PollerSettings.from_settings(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("[node] node %s ready", settings.node_address)
        yield
        logger.info("[node] shutting down, stopping %d poller(s)", len(pollers.active()))
        pollers.shutdown()

    app = FastAPI(title=f"MPC Sum Node {settings.node_address}", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.pollers = pollers

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins, allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"ok": True, "address": settings.node_address}

    @app.post("/processes", response_model=ProcessResp, status_code=201)
    def create_process(req: CreateProcessReq):
        process_id = req.process_id.strip()
        if not process_id:
            raise HTTPException(status_code=400, detail="process_id must be non-empty")
        try:
            store.create(process_id, req.peers, req.threshold, req.input)
        except AlreadyExists as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _result_resp(store, process_id)

    @app.get("/processes", response_model=ProcessListResp)
    def list_processes(active: bool = Query(False)):
        return ProcessListResp(processes=store.list_ids(active_only=active))

    @app.get("/processes/{process_id}", response_model=ProcessResp)
    def get_result(process_id: str):
        try:
            return _result_resp(store, process_id)
        except ProcessNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.delete("/processes/{process_id}")
    def delete_process(process_id: str):
        try:
            store.delete(process_id)
        except ProcessNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        pollers.stop_process(process_id)
        return {"deleted": process_id}

    @app.get("/processes/{process_id}/input-share", response_model=ShareResp)
    def input_share(process_id: str, x_peer_address: Optional[str] = Header(None, alias=PEER_HEADER)):
        requester = _requester(x_peer_address)
        try:
            share = store.input_share_for(process_id, requester)
        except ProcessNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except UnknownPeer as e:
            raise HTTPException(status_code=403, detail=str(e))
        return ShareResp(point=share.point, value=scalar_to_hex(share.value))

    @app.get("/processes/{process_id}/sum-share", response_model=ShareResp)
    def sum_share(process_id: str, x_peer_address: Optional[str] = Header(None, alias=PEER_HEADER)):
        requester = _requester(x_peer_address)
        try:
            store.get(process_id).peer(requester)
            share = store.sum_share(process_id)
        except ProcessNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except UnknownPeer as e:
            raise HTTPException(status_code=403, detail=str(e))
        except NotReady as e:
            raise HTTPException(status_code=HTTP_STATUS_NOT_READY, detail=str(e))
        return ShareResp(point=share.point, value=scalar_to_hex(share.value))

    return app


def main() -> None:
    load_env_file()
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
